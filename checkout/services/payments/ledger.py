"""
PurchaseLedger — persisted purchase attempts and the single idempotent
transition `apply_outcome`.

The transition is a conditional UPDATE keyed on status='created'; whoever
changes the row wins, every other caller (sync verify, webhook redelivery,
reconciliation) re-reads the row and classifies what it sees. A plain
read-then-write would let two confirmations both "win" and double-grant.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from checkout.core.errors import Conflict, NotFound
from checkout.db.base import utcnow
from checkout.models.purchase import Purchase, PurchaseStatus
from checkout.models.user import User
from checkout.services.payments.entitlements import EntitlementGranter
from checkout.utils.metrics import payment_transitions_total

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    PAID = "paid"
    FAILED = "failed"


class TransitionKind(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    CONFLICT = "conflict"
    UNKNOWN_ORDER = "unknown_order"


@dataclass(frozen=True)
class TransitionResult:
    kind: TransitionKind
    purchase: Purchase | None = None
    granted: bool = False

    @property
    def ok(self) -> bool:
        return self.kind in (TransitionKind.APPLIED, TransitionKind.ALREADY_APPLIED)


class PurchaseLedger:
    def __init__(self, db: Session, granter: EntitlementGranter | None = None):
        self.db = db
        self.granter = granter or EntitlementGranter(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, purchase_id: str) -> Purchase | None:
        return self.db.query(Purchase).filter(Purchase.id == purchase_id).one_or_none()

    def get_by_order_id(self, order_id: str) -> Purchase | None:
        return (
            self.db.query(Purchase)
            .filter(Purchase.order_id == order_id)
            .populate_existing()
            .one_or_none()
        )

    def get_by_payment_id(self, payment_id: str) -> Purchase | None:
        return self.db.query(Purchase).filter(Purchase.payment_id == payment_id).one_or_none()

    def find_blocking(self, user_id: str, plan_id: str) -> Purchase | None:
        """Open (created) or paid purchase for the pair; failed ones never block."""
        return (
            self.db.query(Purchase)
            .filter(
                Purchase.user_id == user_id,
                Purchase.plan_id == plan_id,
                Purchase.status.in_((PurchaseStatus.CREATED, PurchaseStatus.PAID)),
            )
            .order_by(Purchase.created_at.desc())
            .first()
        )

    def list_pending(self, older_than, limit: int = 100) -> list[Purchase]:
        return (
            self.db.query(Purchase)
            .filter(Purchase.status == PurchaseStatus.CREATED, Purchase.created_at <= older_than)
            .order_by(Purchase.created_at)
            .limit(limit)
            .all()
        )

    def list_with_users(self) -> list[tuple[Purchase, User | None]]:
        """All purchases, newest first, joined with the buyer (admin view)."""
        return (
            self.db.query(Purchase, User)
            .outerjoin(User, User.id == Purchase.user_id)
            .order_by(Purchase.created_at.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, **fields) -> Purchase:
        """Insert a new `created` purchase. Raises IntegrityError if the pair already has an open order."""
        now = fields.pop("now", None) or utcnow()
        purchase = Purchase(status=PurchaseStatus.CREATED, created_at=now, updated_at=now, **fields)
        self.db.add(purchase)
        self.db.flush()
        return purchase

    def apply_outcome(
        self,
        payment_id: str,
        order_id: str,
        outcome: Outcome,
        failure_reason: str | None = None,
        source: str = "verify",
    ) -> TransitionResult:
        """
        Move the purchase for `order_id` out of `created`, exactly once.
        Commits. On a fresh `paid` transition the entitlement is granted in the
        same transaction.
        """
        values = {"payment_id": payment_id, "status": outcome.value, "updated_at": utcnow()}
        if outcome is Outcome.FAILED and failure_reason:
            values["failure_reason"] = failure_reason[:500]

        try:
            res = self.db.execute(
                update(Purchase)
                .where(Purchase.order_id == order_id, Purchase.status == PurchaseStatus.CREATED)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            # payment_id already recorded on another order
            self.db.rollback()
            purchase = self.get_by_order_id(order_id)
            return self._finish(TransitionKind.CONFLICT, purchase, payment_id, outcome, source)

        if res.rowcount == 1:
            try:
                purchase = self.get_by_order_id(order_id)
                granted = False
                if outcome is Outcome.PAID:
                    granted = self.granter.grant(purchase)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            return self._finish(TransitionKind.APPLIED, purchase, payment_id, outcome, source, granted)

        self.db.rollback()
        purchase = self.get_by_order_id(order_id)
        return self._finish(self._classify(purchase, payment_id, outcome), purchase, payment_id, outcome, source)

    @staticmethod
    def _classify(purchase: Purchase | None, payment_id: str, outcome: Outcome) -> TransitionKind:
        if purchase is None:
            return TransitionKind.UNKNOWN_ORDER
        if purchase.status == PurchaseStatus.PAID:
            if purchase.payment_id == payment_id:
                return TransitionKind.ALREADY_APPLIED
            return TransitionKind.CONFLICT
        if purchase.status == PurchaseStatus.FAILED:
            if outcome is Outcome.FAILED:
                return TransitionKind.ALREADY_APPLIED
            return TransitionKind.CONFLICT
        # Still `created` after a zero-row update: only possible if the row
        # changed under us and was reverted; report rather than guess.
        return TransitionKind.CONFLICT

    def _finish(
        self,
        kind: TransitionKind,
        purchase: Purchase | None,
        payment_id: str,
        outcome: Outcome,
        source: str,
        granted: bool = False,
    ) -> TransitionResult:
        payment_transitions_total.labels(result=kind.value).inc()
        extra = {
            "order_id": purchase.order_id if purchase else None,
            "purchase_id": purchase.id if purchase else None,
            "payment_id": payment_id,
            "outcome": outcome.value,
            "source": source,
            "result": kind.value,
        }
        if kind is TransitionKind.CONFLICT:
            extra["recorded_payment_id"] = purchase.payment_id if purchase else None
            extra["status"] = purchase.status if purchase else None
            logger.warning("purchase_transition_conflict", extra=extra)
        elif kind is TransitionKind.UNKNOWN_ORDER:
            logger.warning("purchase_transition_unknown_order", extra=extra)
        elif kind is TransitionKind.ALREADY_APPLIED:
            logger.info("purchase_transition_duplicate", extra=extra)
        else:
            logger.info("purchase_transition_applied", extra=extra)
        return TransitionResult(kind=kind, purchase=purchase, granted=granted)


def raise_for_result(result: TransitionResult, order_id: str, payment_id: str) -> TransitionResult:
    """Surface CONFLICT / UNKNOWN_ORDER as errors; APPLIED and ALREADY_APPLIED pass through."""
    if result.kind is TransitionKind.CONFLICT:
        raise Conflict(
            "Payment conflicts with the recorded outcome for this order",
            order_id=order_id,
            payment_id=payment_id,
        )
    if result.kind is TransitionKind.UNKNOWN_ORDER:
        raise NotFound("Order not found", order_id=order_id)
    return result
