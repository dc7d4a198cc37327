"""
Reconciliation — the third outcome signal. Reads the gateway's view of an
order and feeds it through the same apply_outcome as verify and webhooks.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from checkout.core.config import CheckoutConfig
from checkout.core.errors import CheckoutError, NotFound
from checkout.db.base import utcnow
from checkout.services.payments.gateway import RazorpayClient
from checkout.services.payments.ledger import Outcome, PurchaseLedger, TransitionResult

logger = logging.getLogger(__name__)

# Gateway payment states that may still turn into a capture.
IN_FLIGHT_STATUSES = ("created", "authorized")


class ReconciliationService:
    def __init__(self, db: Session, gateway: RazorpayClient, config: CheckoutConfig):
        self.db = db
        self.gateway = gateway
        self.config = config
        self.ledger = PurchaseLedger(db)

    def reconcile_order(self, order_id: str) -> TransitionResult | None:
        """
        Apply the gateway's outcome for one order. Returns None when the
        gateway has nothing conclusive yet (no payments, or one still in flight).
        """
        purchase = self.ledger.get_by_order_id(order_id)
        if purchase is None:
            raise NotFound("Order not found", order_id=order_id)

        payments = self.gateway.fetch_order_payments(order_id)
        captured = [p for p in payments if p.get("status") == "captured"]
        if captured:
            payment = captured[0]
            return self.ledger.apply_outcome(payment["id"], order_id, Outcome.PAID, source="reconcile")

        if not payments or any(p.get("status") in IN_FLIGHT_STATUSES for p in payments):
            return None

        failed = [p for p in payments if p.get("status") == "failed"]
        if failed:
            latest = max(failed, key=lambda p: p.get("created_at") or 0)
            return self.ledger.apply_outcome(
                latest["id"],
                order_id,
                Outcome.FAILED,
                failure_reason=latest.get("error_description"),
                source="reconcile",
            )
        return None

    def reconcile_pending(self, now: datetime | None = None, limit: int = 100) -> dict[str, int]:
        """Sweep `created` purchases older than the configured age."""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.config.reconcile_min_age_minutes)
        order_ids = [p.order_id for p in self.ledger.list_pending(cutoff, limit=limit)]
        stats = {"checked": 0, "resolved": 0, "pending": 0, "errors": 0}
        for order_id in order_ids:
            stats["checked"] += 1
            try:
                result = self.reconcile_order(order_id)
            except CheckoutError as e:
                stats["errors"] += 1
                logger.warning("reconcile_order_error", extra={"order_id": order_id, "error": e.message})
                continue
            if result is None:
                stats["pending"] += 1
            else:
                stats["resolved"] += 1
        logger.info("reconcile_pending_done", extra={"count": stats["checked"], "result": stats})
        return stats
