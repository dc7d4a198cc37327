"""
Counseling plan entitlement — one row per (user, plan_key).
Written only by EntitlementGranter; payment_id records which purchase granted it.
"""
from uuid import uuid4

from sqlalchemy import Boolean, Column, String, UniqueConstraint

from checkout.db.base import Base, UTCDateTime, utcnow


class CounselingPlan(Base):
    __tablename__ = "counseling_plans"
    __table_args__ = (UniqueConstraint("user_id", "plan_key", name="uq_counseling_plans_user_key"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    plan_key = Column(String, nullable=False)  # "josaa" / "jacDelhi" / "uptac" / "whatsapp"
    active = Column(Boolean, nullable=False, default=False)
    purchased_on = Column(UTCDateTime, nullable=True)
    valid_until = Column(UTCDateTime, nullable=True)
    payment_id = Column(String, nullable=True)
    invite_token = Column(String, unique=True, nullable=True)  # community access only
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
