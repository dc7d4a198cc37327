"""
WebhookDispatcher — asynchronous gateway events.

The gateway retries any non-2xx delivery and may send the same event several
times, in any order relative to the checkout callback. That is safe only
because every handler ends in PurchaseLedger.apply_outcome.

Response contract (see api/routes/webhooks.py):
- bad signature / unparseable body        -> 400, never processed
- unhandled event kind or unknown order   -> 200, no state change
- ledger conflict                         -> 409, audited, not retried into success
- handler exception                       -> 500, gateway redelivers
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from checkout.core.config import GatewayConfig
from checkout.core.errors import CheckoutError, InvalidSignature, ValidationError, WebhookProcessingError
from checkout.services.audit.service import AuditService
from checkout.services.payments.ledger import Outcome, PurchaseLedger, TransitionKind, TransitionResult
from checkout.services.payments.signature import require_valid, verify_webhook_signature
from checkout.utils.metrics import signature_failures_total, webhook_events_total

logger = logging.getLogger(__name__)


class WebhookEventKind(str, Enum):
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_AUTHORIZED = "payment.authorized"
    ORDER_PAID = "order.paid"
    UNHANDLED = "unhandled"

    @classmethod
    def from_wire(cls, event: str) -> WebhookEventKind:
        try:
            return cls(event)
        except ValueError:
            return cls.UNHANDLED


class WebhookResultKind(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_ORDER = "unknown_order"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class WebhookResult:
    kind: WebhookResultKind
    event: str
    transition: TransitionResult | None = None

    @property
    def message(self) -> str:
        match self.kind:
            case WebhookResultKind.PROCESSED:
                return "Handled"
            case WebhookResultKind.DUPLICATE:
                return "Already processed"
            case WebhookResultKind.IGNORED:
                return f"Unhandled event: {self.event}"
            case WebhookResultKind.UNKNOWN_ORDER:
                return "Order not found; ignored"
            case WebhookResultKind.CONFLICT:
                return "Payment conflicts with the recorded outcome for this order"


@dataclass(frozen=True)
class PaymentEntity:
    payment_id: str
    order_id: str
    status: str | None
    error_description: str | None

    @classmethod
    def from_payload(cls, body: dict) -> PaymentEntity:
        entity = ((body.get("payload") or {}).get("payment") or {}).get("entity")
        if not isinstance(entity, dict):
            raise ValidationError("Invalid webhook payload: missing payment entity")
        payment_id = entity.get("id")
        order_id = entity.get("order_id")
        if not isinstance(payment_id, str) or not payment_id or not isinstance(order_id, str) or not order_id:
            raise ValidationError("Invalid webhook payload: payment entity without id/order_id")
        return cls(
            payment_id=payment_id,
            order_id=order_id,
            status=entity.get("status"),
            error_description=entity.get("error_description"),
        )


class WebhookDispatcher:
    def __init__(self, db: Session, gateway_config: GatewayConfig, ledger: PurchaseLedger | None = None):
        self.db = db
        self.gateway_config = gateway_config
        self.ledger = ledger or PurchaseLedger(db)
        self.audit = AuditService(db)

    def handle(
        self,
        raw_body: bytes,
        signature: str | None,
        source_ip: str | None = None,
        event_id: str | None = None,
    ) -> WebhookResult:
        self._verify(raw_body, signature, source_ip, event_id)
        body = self._parse(raw_body)

        event = body.get("event")
        if not isinstance(event, str) or not event:
            raise ValidationError("Invalid webhook payload: missing event")
        kind = WebhookEventKind.from_wire(event)
        if kind is WebhookEventKind.UNHANDLED:
            logger.warning("webhook_event_unhandled", extra={"event": event, "event_id": event_id})
            webhook_events_total.labels(event="unhandled", result=WebhookResultKind.IGNORED.value).inc()
            return WebhookResult(kind=WebhookResultKind.IGNORED, event=event)

        payment = PaymentEntity.from_payload(body)
        try:
            transition = self._dispatch(kind, payment)
        except Exception as e:
            logger.exception(
                "webhook_processing_error",
                extra={
                    "event": event,
                    "event_id": event_id,
                    "order_id": payment.order_id,
                    "payment_id": payment.payment_id,
                },
            )
            message = e.message if isinstance(e, CheckoutError) else "Webhook processing failed"
            raise WebhookProcessingError(message, event=event) from e

        result = self._result(kind, transition)
        if result.kind is WebhookResultKind.CONFLICT:
            self.audit.record_security_event(
                "purchase_transition_conflict", "gateway", event_id, payment.order_id,
                {"payment_id": payment.payment_id, "event": event, "source": "webhook"},
            )
        webhook_events_total.labels(event=kind.value, result=result.kind.value).inc()
        logger.info(
            "webhook_event_handled",
            extra={
                "event": event,
                "event_id": event_id,
                "order_id": payment.order_id,
                "payment_id": payment.payment_id,
                "result": result.kind.value,
            },
        )
        return result

    def _verify(self, raw_body: bytes, signature: str | None, source_ip: str | None, event_id: str | None) -> None:
        try:
            require_valid(
                verify_webhook_signature(raw_body, signature, self.gateway_config.webhook_secret),
                "webhook",
            )
        except InvalidSignature:
            signature_failures_total.labels(source="webhook").inc()
            logger.warning(
                "webhook_signature_invalid",
                extra={"source_ip": source_ip, "event_id": event_id},
            )
            self.audit.record_security_event(
                "webhook_signature_invalid", "gateway", event_id, None,
                {"source_ip": source_ip, "body_bytes": len(raw_body)},
            )
            raise

    @staticmethod
    def _parse(raw_body: bytes) -> dict:
        try:
            body = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError("Invalid webhook payload: body is not JSON") from e
        if not isinstance(body, dict):
            raise ValidationError("Invalid webhook payload")
        return body

    def _dispatch(self, kind: WebhookEventKind, payment: PaymentEntity) -> TransitionResult | None:
        match kind:
            case WebhookEventKind.PAYMENT_CAPTURED | WebhookEventKind.ORDER_PAID:
                return self.ledger.apply_outcome(
                    payment.payment_id, payment.order_id, Outcome.PAID, source="webhook"
                )
            case WebhookEventKind.PAYMENT_FAILED:
                return self.ledger.apply_outcome(
                    payment.payment_id,
                    payment.order_id,
                    Outcome.FAILED,
                    failure_reason=payment.error_description,
                    source="webhook",
                )
            case WebhookEventKind.PAYMENT_AUTHORIZED:
                # Not captured yet; payment.captured / order.paid will follow.
                return None
            case WebhookEventKind.UNHANDLED:
                return None

    @staticmethod
    def _result(kind: WebhookEventKind, transition: TransitionResult | None) -> WebhookResult:
        if transition is None:
            return WebhookResult(kind=WebhookResultKind.IGNORED, event=kind.value)
        match transition.kind:
            case TransitionKind.APPLIED:
                result_kind = WebhookResultKind.PROCESSED
            case TransitionKind.ALREADY_APPLIED:
                result_kind = WebhookResultKind.DUPLICATE
            case TransitionKind.UNKNOWN_ORDER:
                result_kind = WebhookResultKind.UNKNOWN_ORDER
            case TransitionKind.CONFLICT:
                result_kind = WebhookResultKind.CONFLICT
        return WebhookResult(kind=result_kind, event=kind.value, transition=transition)
