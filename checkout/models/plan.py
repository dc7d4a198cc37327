"""
Plan model — purchasable plans. plan_type selects pricing/validity/grant rules
(see checkout.services.payments.plan_types.PlanType).
"""
from uuid import uuid4

from sqlalchemy import Boolean, Column, Numeric, String

from checkout.db.base import Base, UTCDateTime, utcnow


class Plan(Base):
    __tablename__ = "plans"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    title = Column(String, nullable=False)
    plan_type = Column(String, nullable=False)  # "tool" / "premium" / "josaa" / "jacDelhi" / "uptac" / "whatsapp"
    price = Column(Numeric(10, 2), nullable=False)  # major units (rupees)
    description = Column(String, nullable=False, default="")
    expiry_date = Column(UTCDateTime, nullable=True)  # fixed entitlement end; null = rolling window
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
