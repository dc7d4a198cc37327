from uuid import uuid4

from sqlalchemy import Column, String

from checkout.db.base import Base, UTCDateTime, utcnow


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    payment_id = Column(String, unique=True, nullable=False)  # content address
    purchase_id = Column(String, nullable=False, index=True)
    content_type = Column(String, nullable=False)
    path = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
