"""
EntitlementGranter — applies the business effect of a paid purchase.

Idempotent on two levels:
- purchase gate: purchases.entitlement_granted_at goes NULL -> now in one
  conditional UPDATE; only the caller that flips it applies the effect;
- per-plan guard: a counseling row already carrying this payment_id is left
  untouched, so a replay never re-extends validity.

Entitlement is only ever added or extended, never cleared.
"""
import logging
import secrets

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from checkout.core.errors import NotFound
from checkout.db.base import utcnow
from checkout.models.counseling_plan import CounselingPlan
from checkout.models.coupon import Coupon
from checkout.models.plan import Plan
from checkout.models.purchase import Purchase, PurchaseStatus
from checkout.models.user import User
from checkout.services.payments.plan_types import GrantEffect, PlanType
from checkout.utils.metrics import entitlements_granted_total

logger = logging.getLogger(__name__)


class EntitlementGranter:
    def __init__(self, db: Session):
        self.db = db

    def grant(self, purchase: Purchase, plan: Plan | None = None) -> bool:
        """
        Apply the plan's grant effect for a paid purchase.
        Returns True only for the call that actually granted. Does not commit.
        """
        if purchase.status != PurchaseStatus.PAID:
            return False
        if plan is None:
            plan = self.db.query(Plan).filter(Plan.id == purchase.plan_id).one_or_none()
        if plan is None:
            raise NotFound("Plan not found", plan_id=purchase.plan_id)
        plan_type = PlanType.of(plan)
        now = utcnow()

        claimed = self.db.execute(
            update(Purchase)
            .where(
                Purchase.id == purchase.id,
                Purchase.status == PurchaseStatus.PAID,
                Purchase.entitlement_granted_at.is_(None),
            )
            .values(entitlement_granted_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            logger.info(
                "entitlement_already_granted",
                extra={"purchase_id": purchase.id, "payment_id": purchase.payment_id},
            )
            return False

        effect = plan_type.grant_effect
        match effect:
            case GrantEffect.PREMIUM:
                self._grant_premium(purchase, now)
            case GrantEffect.COUNSELING:
                self._grant_counseling(purchase, plan_type)
            case GrantEffect.NONE:
                pass

        if purchase.coupon_used:
            self._consume_coupon(purchase.coupon_used)

        self.db.flush()
        entitlements_granted_total.labels(effect=effect.value).inc()
        logger.info(
            "entitlement_granted",
            extra={
                "user_id": purchase.user_id,
                "purchase_id": purchase.id,
                "payment_id": purchase.payment_id,
                "plan_key": plan_type.value,
                "effect": effect.value,
            },
        )
        return True

    def _grant_premium(self, purchase: Purchase, now) -> None:
        res = self.db.execute(
            update(User)
            .where(User.id == purchase.user_id)
            .values(premium=True, premium_since=func.coalesce(User.premium_since, now), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise NotFound("User not found", user_id=purchase.user_id)

    def _grant_counseling(self, purchase: Purchase, plan_type: PlanType) -> CounselingPlan:
        row = (
            self.db.query(CounselingPlan)
            .filter(
                CounselingPlan.user_id == purchase.user_id,
                CounselingPlan.plan_key == plan_type.value,
            )
            .with_for_update()
            .one_or_none()
        )
        if row is not None and row.payment_id == purchase.payment_id:
            return row
        if row is None:
            row = CounselingPlan(user_id=purchase.user_id, plan_key=plan_type.value)
            self.db.add(row)

        valid_until = purchase.validity
        if row.active and row.valid_until is not None and row.valid_until > valid_until:
            # extend only; an earlier, longer entitlement keeps its end date
            valid_until = row.valid_until

        row.active = True
        row.purchased_on = purchase.created_at
        row.valid_until = valid_until
        row.payment_id = purchase.payment_id
        if plan_type.mints_invite:
            row.invite_token = secrets.token_urlsafe(16)
        return row

    def _consume_coupon(self, code: str) -> None:
        self.db.execute(
            update(Coupon)
            .where(Coupon.code == code)
            .values(times_used=Coupon.times_used + 1)
            .execution_options(synchronize_session=False)
        )

    def grant_missing(self, limit: int = 100) -> int:
        """Follow-up for paid purchases whose grant never landed. Commits per purchase."""
        pending = (
            self.db.query(Purchase)
            .filter(
                Purchase.status == PurchaseStatus.PAID,
                Purchase.entitlement_granted_at.is_(None),
            )
            .order_by(Purchase.updated_at)
            .limit(limit)
            .all()
        )
        granted = 0
        for purchase in pending:
            purchase_id = purchase.id
            try:
                if self.grant(purchase):
                    granted += 1
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.exception("entitlement_follow_up_error", extra={"purchase_id": purchase_id})
        return granted
