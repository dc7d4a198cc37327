"""
Celery periodic tasks: reconcile stale `created` purchases against the
gateway, and re-run entitlement grants that never landed.
"""
import logging

from checkout.core.celery_app import celery_app
from checkout.core.config import settings
from checkout.db.session import SessionLocal
from checkout.services.payments.entitlements import EntitlementGranter
from checkout.services.payments.gateway import RazorpayClient
from checkout.services.payments.reconcile import ReconciliationService

logger = logging.getLogger(__name__)


@celery_app.task(name="checkout.workers.tasks.reconcile.reconcile_pending_purchases")
def reconcile_pending_purchases() -> dict:
    """Resolve created purchases the checkout callback and webhooks never settled."""
    db = SessionLocal()
    gateway = RazorpayClient(settings.gateway_config())
    try:
        return ReconciliationService(db, gateway, settings.checkout_config()).reconcile_pending()
    except Exception:
        db.rollback()
        logger.exception("reconcile_pending_purchases_error")
        raise
    finally:
        gateway.close()
        db.close()


@celery_app.task(name="checkout.workers.tasks.reconcile.grant_missing_entitlements")
def grant_missing_entitlements() -> dict:
    """Paid purchases whose entitlement grant was not recorded."""
    db = SessionLocal()
    try:
        granted = EntitlementGranter(db).grant_missing()
        if granted:
            logger.info("entitlements_follow_up_granted", extra={"count": granted})
        return {"granted": granted}
    finally:
        db.close()
