"""
User aggregate as seen by checkout.
Account management lives elsewhere; checkout reads identity fields and writes
only the entitlement fields (premium / premium_since) via EntitlementGranter.
"""
from uuid import uuid4

from sqlalchemy import Boolean, Column, String

from checkout.db.base import Base, UTCDateTime, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    full_name = Column(String, nullable=False, default="")
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default="mentee")  # mentee / mentor / admin
    is_active = Column(Boolean, nullable=False, default=True)

    # Entitlement fields (EntitlementGranter only)
    premium = Column(Boolean, nullable=False, default=False, index=True)
    premium_since = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def is_admin(self) -> bool:
        return self.role == "admin"
