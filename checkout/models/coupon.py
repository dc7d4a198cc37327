from uuid import uuid4

from sqlalchemy import Boolean, Column, Integer, String

from checkout.db.base import Base, JSONType, UTCDateTime, utcnow


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code = Column(String, unique=True, nullable=False, index=True)
    discount_percent = Column(Integer, nullable=False)  # 0..100
    is_active = Column(Boolean, nullable=False, default=True)
    expiry_date = Column(UTCDateTime, nullable=False)
    applicable_plans = Column(JSONType, nullable=False, default=list)  # list of plan_type values
    times_used = Column(Integer, nullable=False, default=0)  # paid purchases only
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
