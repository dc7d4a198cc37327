"""
Checkout error taxonomy.

Every error carries a stable machine-readable `kind` and the HTTP status the
API layer renders it with. `AlreadyApplied` is deliberately absent: a
duplicate outcome is a successful TransitionResult, not an error.
"""
from __future__ import annotations


class CheckoutError(Exception):
    kind = "checkout_error"
    status_code = 500

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def as_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "message": self.message}


class ValidationError(CheckoutError):
    kind = "validation_error"
    status_code = 400


class NotFound(CheckoutError):
    kind = "not_found"
    status_code = 404


class Forbidden(CheckoutError):
    kind = "forbidden"
    status_code = 403


class AccountDeactivated(Forbidden):
    kind = "account_deactivated"


class AlreadyPurchased(Forbidden):
    kind = "already_purchased"


class RateLimited(CheckoutError):
    kind = "rate_limited"
    status_code = 429


class CouponError(ValidationError):
    kind = "coupon_invalid"


class CouponNotFound(CouponError):
    kind = "coupon_not_found"


class CouponInactive(CouponError):
    kind = "coupon_inactive"


class CouponExpired(CouponError):
    kind = "coupon_expired"


class CouponNotApplicable(CouponError):
    kind = "coupon_not_applicable"


class InvalidSignature(CheckoutError):
    kind = "invalid_signature"
    status_code = 400


class Conflict(CheckoutError):
    kind = "conflict"
    status_code = 409


class GatewayUnavailable(CheckoutError):
    kind = "gateway_unavailable"
    status_code = 502


class InvoiceUnavailable(CheckoutError):
    kind = "invoice_unavailable"
    status_code = 503


class WebhookProcessingError(CheckoutError):
    """Raised so the gateway redelivers; safe because apply_outcome is idempotent."""

    kind = "webhook_processing_failed"
    status_code = 500
