"""
Payment lifecycle: order creation, signature checks, the purchase ledger's
idempotent transition, webhook dispatch and entitlement grants.
"""
from checkout.services.payments.entitlements import EntitlementGranter
from checkout.services.payments.ledger import (
    Outcome,
    PurchaseLedger,
    TransitionKind,
    TransitionResult,
    raise_for_result,
)
from checkout.services.payments.plan_types import GrantEffect, PlanType
from checkout.services.payments.signature import sign, verify

__all__ = [
    "EntitlementGranter",
    "GrantEffect",
    "Outcome",
    "PlanType",
    "PurchaseLedger",
    "TransitionKind",
    "TransitionResult",
    "raise_for_result",
    "sign",
    "verify",
]
