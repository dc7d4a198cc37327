"""
OrderService — gateway order creation (with coupon pricing) and the
synchronous checkout verification path.

Ordering rule for create_order: remote order first, local row second, so a
gateway failure or timeout never leaves a purchase without a remote order.
"""
import json
import logging
from datetime import datetime
from uuid import uuid4

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from checkout.core.config import CheckoutConfig, GatewayConfig
from checkout.core.errors import (
    AccountDeactivated,
    AlreadyPurchased,
    Forbidden,
    InvalidSignature,
    NotFound,
    RateLimited,
    ValidationError,
)
from checkout.db.base import utcnow
from checkout.models.plan import Plan
from checkout.models.purchase import Purchase, PurchaseStatus
from checkout.models.user import User
from checkout.schemas.payments import OrderResponse, VerifyPaymentResponse
from checkout.services.audit.service import AuditService
from checkout.services.catalog.service import PlanCatalog
from checkout.services.payments.gateway import RazorpayClient
from checkout.services.payments.ledger import Outcome, PurchaseLedger, TransitionKind, raise_for_result
from checkout.services.payments.plan_types import PlanType, apply_discount, to_minor_units
from checkout.services.payments.signature import require_valid, verify_payment_signature
from checkout.utils.metrics import orders_created_total, signature_failures_total

logger = logging.getLogger(__name__)

MIN_ORDER_AMOUNT = 100  # gateway minimum, minor units


class OrderService:
    def __init__(
        self,
        db: Session,
        gateway: RazorpayClient,
        gateway_config: GatewayConfig,
        config: CheckoutConfig,
        redis_client: redis.Redis | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.gateway_config = gateway_config
        self.config = config
        self._redis = redis_client
        self.catalog = PlanCatalog(db)
        self.ledger = PurchaseLedger(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Create order
    # ------------------------------------------------------------------

    def create_order(
        self,
        user_id: str,
        plan_id: str,
        coupon_code: str | None = None,
        now: datetime | None = None,
    ) -> OrderResponse:
        now = now or utcnow()
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        if user is None:
            raise NotFound("User not found", user_id=user_id)
        if not user.is_active:
            raise AccountDeactivated("Account is deactivated. You cannot purchase a plan.", user_id=user_id)
        plan = self.catalog.get_plan(plan_id)
        if plan is None or not plan.is_active:
            raise NotFound("Plan not found", plan_id=plan_id)
        plan_type = PlanType.of(plan)

        existing = self.ledger.find_blocking(user.id, plan.id)
        if existing is not None:
            return self._existing_order(existing, user, plan)

        if not self._check_rate_limit(user.id):
            raise RateLimited("Too many purchase attempts. Try again later.", user_id=user.id)

        amount = to_minor_units(plan.price)
        coupon_used = None
        discount_percent = 0
        if coupon_code and coupon_code.strip():
            coupon = self.catalog.check_coupon(coupon_code, plan_type, now)
            coupon_used = coupon.code
            discount_percent = coupon.discount_percent
            amount = apply_discount(amount, discount_percent)
        if amount < MIN_ORDER_AMOUNT:
            raise ValidationError("Order amount is below the payment gateway minimum", plan_id=plan.id)

        validity = plan_type.validity(plan, now, self.config.default_validity_days)
        receipt = f"rcpt_{uuid4().hex[:24]}"
        notes = {
            "userId": user.id,
            "planId": plan.id,
            "coupon": json.dumps({"code": coupon_used, "discountPercent": discount_percent}) if coupon_used else "",
            "validity": validity.isoformat(),
        }
        order = self.gateway.create_order(amount, self.config.currency, receipt, notes)

        try:
            purchase = self.ledger.create(
                user_id=user.id,
                plan_id=plan.id,
                plan_name=plan.title,
                full_name=user.full_name,
                order_id=order["id"],
                amount=amount,
                currency=order.get("currency", self.config.currency),
                receipt=order.get("receipt", receipt),
                coupon_used=coupon_used,
                validity=validity,
                now=now,
            )
            self.db.commit()
        except IntegrityError:
            # A concurrent create_order for the same pair committed first.
            self.db.rollback()
            logger.warning(
                "order_create_race_lost",
                extra={"user_id": user.id, "plan_id": plan.id, "order_id": order.get("id")},
            )
            existing = self.ledger.find_blocking(user.id, plan.id)
            if existing is None:
                raise
            return self._existing_order(existing, user, plan)

        orders_created_total.labels(plan_type=plan_type.value).inc()
        logger.info(
            "order_created",
            extra={
                "user_id": user.id,
                "plan_id": plan.id,
                "purchase_id": purchase.id,
                "order_id": purchase.order_id,
                "amount": amount,
                "coupon": coupon_used,
            },
        )
        return self._order_response(purchase, user, plan, "Order created")

    def _existing_order(self, existing: Purchase, user: User, plan: Plan) -> OrderResponse:
        if existing.status == PurchaseStatus.PAID:
            raise AlreadyPurchased("Plan already purchased.", user_id=user.id, plan_id=plan.id)
        logger.info(
            "order_reused",
            extra={"user_id": user.id, "plan_id": plan.id, "order_id": existing.order_id},
        )
        return self._order_response(existing, user, plan, "Order already created. Proceed to payment.")

    def _order_response(self, purchase: Purchase, user: User, plan: Plan, message: str) -> OrderResponse:
        return OrderResponse(
            message=message,
            order_id=purchase.order_id,
            amount=purchase.amount,
            currency=purchase.currency,
            purchase_id=purchase.id,
            plan_name=plan.title,
            key_id=self.gateway_config.key_id,
            full_name=user.full_name,
            email=user.email,
            phone=user.phone,
        )

    # ------------------------------------------------------------------
    # Verify payment (synchronous checkout callback)
    # ------------------------------------------------------------------

    def verify_payment(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        user_id: str | None = None,
        source_ip: str | None = None,
    ) -> VerifyPaymentResponse:
        try:
            require_valid(
                verify_payment_signature(order_id, payment_id, signature, self.gateway_config.key_secret),
                "checkout",
                order_id=order_id,
            )
        except InvalidSignature:
            signature_failures_total.labels(source="checkout").inc()
            logger.warning(
                "payment_signature_invalid",
                extra={"order_id": order_id, "payment_id": payment_id, "user_id": user_id, "source_ip": source_ip},
            )
            self.audit.record_security_event(
                "payment_signature_invalid", "user", user_id, order_id,
                {"payment_id": payment_id, "source_ip": source_ip},
            )
            raise

        purchase = self.ledger.get_by_order_id(order_id)
        if purchase is None:
            raise NotFound("Order not found", order_id=order_id)
        if user_id is not None and purchase.user_id != user_id:
            raise Forbidden("Order belongs to another user", order_id=order_id)

        payment = self.gateway.fetch_payment(payment_id)
        if payment.get("order_id") != order_id:
            raise ValidationError("Payment does not belong to this order", order_id=order_id)

        match payment.get("status"):
            case "captured":
                outcome = Outcome.PAID
            case "failed":
                outcome = Outcome.FAILED
            case _:
                return VerifyPaymentResponse(
                    success=False,
                    message="Payment not captured yet",
                    status="pending",
                    purchase_id=purchase.id,
                    payment_id=payment_id,
                )

        result = self.ledger.apply_outcome(
            payment_id,
            order_id,
            outcome,
            failure_reason=payment.get("error_description"),
            source="verify",
        )
        if result.kind is TransitionKind.CONFLICT:
            self.audit.record_security_event(
                "purchase_transition_conflict", "user", user_id, order_id,
                {"payment_id": payment_id, "outcome": outcome.value, "source": "verify"},
            )
        raise_for_result(result, order_id, payment_id)

        purchase = result.purchase
        paid = purchase.status == PurchaseStatus.PAID
        return VerifyPaymentResponse(
            success=paid,
            message="Payment verified and plan activated" if paid else "Payment failed",
            status=purchase.status,
            purchase_id=purchase.id,
            payment_id=payment_id,
            already_applied=result.kind is TransitionKind.ALREADY_APPLIED,
        )

    # ------------------------------------------------------------------
    # Rate-limit (Redis — shared across API replicas)
    # ------------------------------------------------------------------

    def _check_rate_limit(self, user_id: str) -> bool:
        if self._redis is None:
            return True
        key = f"purchase_rate:{user_id}"
        try:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, self.config.purchase_rate_window)
            return current <= self.config.purchase_rate_limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open: Redis outage must not block checkout
