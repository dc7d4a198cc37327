from checkout.models.user import User
from checkout.models.plan import Plan
from checkout.models.coupon import Coupon
from checkout.models.purchase import Purchase, PurchaseStatus
from checkout.models.counseling_plan import CounselingPlan
from checkout.models.invoice import Invoice
from checkout.models.audit_log import AuditLog

__all__ = [
    "User", "Plan", "Coupon", "Purchase", "PurchaseStatus",
    "CounselingPlan", "Invoice", "AuditLog",
]
