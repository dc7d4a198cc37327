from uuid import uuid4

from sqlalchemy import Column, String

from checkout.db.base import Base, JSONType, UTCDateTime, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    actor_type = Column(String, nullable=False)  # user / gateway / admin / system
    actor_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
