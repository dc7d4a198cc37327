"""
Service providers for route handlers. Tests swap these via
app.dependency_overrides.
"""
from functools import lru_cache

import redis
from fastapi import Depends
from sqlalchemy.orm import Session

from checkout.core.config import settings
from checkout.db.session import get_db
from checkout.services.invoices.service import HtmlInvoiceRenderer, InvoiceService
from checkout.services.payments.gateway import RazorpayClient
from checkout.services.payments.orders import OrderService
from checkout.services.payments.reconcile import ReconciliationService
from checkout.services.payments.webhooks import WebhookDispatcher
from checkout.storage.local import LocalStorage


@lru_cache
def get_gateway() -> RazorpayClient:
    return RazorpayClient(settings.gateway_config())


@lru_cache
def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def get_order_service(
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
    redis_client: redis.Redis = Depends(get_redis),
) -> OrderService:
    return OrderService(db, gateway, settings.gateway_config(), settings.checkout_config(), redis_client)


def get_webhook_dispatcher(db: Session = Depends(get_db)) -> WebhookDispatcher:
    return WebhookDispatcher(db, settings.gateway_config())


def get_reconciliation_service(
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_gateway),
) -> ReconciliationService:
    return ReconciliationService(db, gateway, settings.checkout_config())


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    return InvoiceService(
        db,
        LocalStorage(settings.invoice_storage_path),
        HtmlInvoiceRenderer(settings.invoice_seller_name),
    )
