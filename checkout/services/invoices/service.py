"""
InvoiceService — lazily produced, content-addressed invoice artifacts.

An artifact is keyed by the gateway payment id and never regenerated once
stored. Rendering is a pluggable black box; its failures surface as
InvoiceUnavailable and never touch purchase state.
"""
import html
import logging
import re
from abc import ABC, abstractmethod
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from checkout.core.errors import InvoiceUnavailable, NotFound
from checkout.models.invoice import Invoice
from checkout.models.plan import Plan
from checkout.models.purchase import Purchase, PurchaseStatus
from checkout.models.user import User
from checkout.services.payments.ledger import PurchaseLedger
from checkout.storage.base import Storage

logger = logging.getLogger(__name__)

PAYMENT_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


class InvoiceRenderer(ABC):
    content_type: str
    extension: str

    @abstractmethod
    def render(self, purchase: Purchase, user: User | None, plan: Plan | None) -> bytes:
        raise NotImplementedError


class HtmlInvoiceRenderer(InvoiceRenderer):
    content_type = "text/html; charset=utf-8"
    extension = ".html"

    def __init__(self, seller_name: str) -> None:
        self.seller_name = seller_name

    def render(self, purchase: Purchase, user: User | None, plan: Plan | None) -> bytes:
        amount = Decimal(purchase.amount) / 100
        rows = [
            ("Invoice", purchase.payment_id),
            ("Order", purchase.order_id),
            ("Receipt", purchase.receipt),
            ("Date", purchase.updated_at.strftime("%d %b %Y")),
            ("Billed to", user.full_name if user else purchase.full_name),
            ("Email", user.email if user else ""),
            ("Plan", plan.title if plan else purchase.plan_name),
            ("Coupon", purchase.coupon_used or "-"),
            ("Valid until", purchase.validity.strftime("%d %b %Y")),
            ("Amount paid", f"{purchase.currency} {amount:.2f}"),
        ]
        body = "\n".join(
            f"<tr><th>{html.escape(label)}</th><td>{html.escape(str(value))}</td></tr>"
            for label, value in rows
        )
        doc = (
            "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
            f"<title>Invoice {html.escape(purchase.payment_id)}</title></head>\n"
            f"<body><h1>{html.escape(self.seller_name)}</h1>\n<table>\n{body}\n</table></body></html>\n"
        )
        return doc.encode("utf-8")


class InvoiceService:
    def __init__(self, db: Session, storage: Storage, renderer: InvoiceRenderer):
        self.db = db
        self.storage = storage
        self.renderer = renderer
        self.ledger = PurchaseLedger(db)

    def get_or_create(self, payment_id: str) -> tuple[Invoice, bytes]:
        if not PAYMENT_ID_RE.match(payment_id or ""):
            raise NotFound("Invoice not found", payment_id=payment_id)

        existing = self._get(payment_id)
        if existing is not None and self.storage.exists(existing.path):
            return existing, self._read(existing)

        purchase = self.ledger.get_by_payment_id(payment_id)
        if purchase is None or purchase.status != PurchaseStatus.PAID:
            raise NotFound("No paid purchase for this payment", payment_id=payment_id)
        user = self.db.query(User).filter(User.id == purchase.user_id).one_or_none()
        plan = self.db.query(Plan).filter(Plan.id == purchase.plan_id).one_or_none()

        try:
            content = self.renderer.render(purchase, user, plan)
            path = self.storage.save_invoice(payment_id, content, self.renderer.extension)
        except Exception as e:
            logger.exception("invoice_render_error", extra={"payment_id": payment_id})
            raise InvoiceUnavailable("Invoice generation failed, please retry", payment_id=payment_id) from e

        if existing is not None:
            # row survived but the file was lost
            existing.path = path
            existing.content_type = self.renderer.content_type
            self.db.commit()
            return existing, content

        invoice = Invoice(
            payment_id=payment_id,
            purchase_id=purchase.id,
            content_type=self.renderer.content_type,
            path=path,
        )
        self.db.add(invoice)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            invoice = self._get(payment_id)
            if invoice is None:
                raise
            return invoice, self._read(invoice)
        logger.info("invoice_generated", extra={"payment_id": payment_id, "purchase_id": purchase.id})
        return invoice, content

    def _get(self, payment_id: str) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.payment_id == payment_id).one_or_none()

    def _read(self, invoice: Invoice) -> bytes:
        try:
            return self.storage.read(invoice.path)
        except OSError as e:
            logger.exception("invoice_read_error", extra={"payment_id": invoice.payment_id})
            raise InvoiceUnavailable("Invoice temporarily unavailable, please retry", payment_id=invoice.payment_id) from e
