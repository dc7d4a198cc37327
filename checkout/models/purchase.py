"""
Purchase model — one row per (user, plan) purchase attempt.
Single source of truth for payment state; never deleted (audit trail).

status: created -> paid | failed. paid and failed are terminal.
order_id, amount, currency, receipt, validity are immutable after insert;
payment_id is written once, together with the terminal status.
"""
from uuid import uuid4

from sqlalchemy import Column, Index, Integer, String, text

from checkout.db.base import Base, UTCDateTime, utcnow


class PurchaseStatus:
    CREATED = "created"
    PAID = "paid"
    FAILED = "failed"

    TERMINAL = (PAID, FAILED)


class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        # At most one open order per (user, plan).
        Index(
            "uq_purchases_open_order",
            "user_id",
            "plan_id",
            unique=True,
            postgresql_where=text("status = 'created'"),
            sqlite_where=text("status = 'created'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=False, index=True)
    plan_name = Column(String, nullable=False, default="")
    full_name = Column(String, nullable=False, default="")

    order_id = Column(String, unique=True, nullable=False)  # gateway order
    payment_id = Column(String, unique=True, nullable=True)  # gateway payment, set on first outcome

    amount = Column(Integer, nullable=False)  # minor units (paise), after discount
    currency = Column(String, nullable=False, default="INR")
    receipt = Column(String, nullable=False)
    coupon_used = Column(String, nullable=True)
    validity = Column(UTCDateTime, nullable=False)

    status = Column(String, nullable=False, default=PurchaseStatus.CREATED, index=True)
    failure_reason = Column(String, nullable=True)
    entitlement_granted_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in PurchaseStatus.TERMINAL
