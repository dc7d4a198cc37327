"""
PlanType — the one place that knows how a plan type is priced, how long its
entitlement lasts and what a successful payment grants.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from dateutil.relativedelta import relativedelta

from checkout.core.errors import ValidationError

# Perpetual validity for tool plans.
PERPETUAL_VALIDITY = datetime(2099, 12, 31, tzinfo=timezone.utc)


class GrantEffect(str, Enum):
    NONE = "none"
    PREMIUM = "premium"
    COUNSELING = "counseling"


class PlanType(str, Enum):
    TOOL = "tool"
    PREMIUM = "premium"
    JOSAA = "josaa"
    JAC_DELHI = "jacDelhi"
    UPTAC = "uptac"
    WHATSAPP = "whatsapp"

    @classmethod
    def of(cls, plan) -> PlanType:
        raw = (plan.plan_type or "").strip()
        try:
            return cls(raw)
        except ValueError:
            raise ValidationError(f"Unsupported plan type: {raw!r}", plan_id=plan.id) from None

    @property
    def grant_effect(self) -> GrantEffect:
        match self:
            case PlanType.TOOL:
                return GrantEffect.NONE
            case PlanType.PREMIUM:
                return GrantEffect.PREMIUM
            case PlanType.JOSAA | PlanType.JAC_DELHI | PlanType.UPTAC | PlanType.WHATSAPP:
                return GrantEffect.COUNSELING

    @property
    def validity_months(self) -> int | None:
        """Rolling window in calendar months; None means the configured day window."""
        match self:
            case PlanType.JOSAA | PlanType.JAC_DELHI | PlanType.UPTAC:
                return 6
            case PlanType.WHATSAPP:
                return 12
            case PlanType.TOOL | PlanType.PREMIUM:
                return None

    @property
    def mints_invite(self) -> bool:
        return self is PlanType.WHATSAPP

    def validity(self, plan, now: datetime, default_days: int) -> datetime:
        """Expiry of the entitlement bought at `now`."""
        if self is PlanType.TOOL:
            return PERPETUAL_VALIDITY
        if plan.expiry_date is not None:
            return plan.expiry_date
        months = self.validity_months
        if months is not None:
            return now + relativedelta(months=months)
        return now + timedelta(days=default_days)


def to_minor_units(price) -> int:
    """Major-unit price (e.g. 299 or "299.50") to minor units (29900 / 29950)."""
    amount = Decimal(str(price)) * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_discount(amount_minor: int, discount_percent: int) -> int:
    """Discounted amount, floored to whole minor units."""
    if not 0 <= discount_percent <= 100:
        raise ValidationError(f"Invalid discount percent: {discount_percent}")
    return (amount_minor * (100 - discount_percent)) // 100
