"""
PlanCatalog — read-only lookup of plans and coupons.
"""
from datetime import datetime

from sqlalchemy.orm import Session

from checkout.core.errors import CouponExpired, CouponInactive, CouponNotApplicable, CouponNotFound
from checkout.models.coupon import Coupon
from checkout.models.plan import Plan
from checkout.services.payments.plan_types import PlanType


class PlanCatalog:
    def __init__(self, db: Session):
        self.db = db

    def get_plan(self, plan_id: str) -> Plan | None:
        return self.db.query(Plan).filter(Plan.id == plan_id).one_or_none()

    def get_coupon(self, code: str) -> Coupon | None:
        return self.db.query(Coupon).filter(Coupon.code == code).one_or_none()

    def check_coupon(self, code: str, plan_type: PlanType, now: datetime) -> Coupon:
        """
        Coupon usable for this plan type at `now`, or the matching Coupon* error.
        A coupon expires strictly after its expiry_date instant.
        """
        coupon = self.get_coupon(code.strip())
        if coupon is None:
            raise CouponNotFound("Coupon not found", coupon=code)
        if not coupon.is_active:
            raise CouponInactive("Coupon is not active", coupon=code)
        if coupon.expiry_date < now:
            raise CouponExpired("Coupon has expired", coupon=code)
        if plan_type.value not in (coupon.applicable_plans or []):
            raise CouponNotApplicable("Coupon is not valid for this plan", coupon=code)
        return coupon
