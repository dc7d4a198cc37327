"""
Celery application: broker and result backend from settings.
Tasks are in checkout.workers.tasks (reconciliation sweeps).
"""
from celery import Celery
from celery.schedules import crontab

from checkout.core.config import settings

celery_app = Celery(
    "checkout",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "checkout.workers.tasks.reconcile",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "reconcile-pending-purchases": {
            "task": "checkout.workers.tasks.reconcile.reconcile_pending_purchases",
            "schedule": crontab(minute="*/15"),
        },
        "grant-missing-entitlements": {
            "task": "checkout.workers.tasks.reconcile.grant_missing_entitlements",
            "schedule": crontab(minute="*/5"),
        },
    },
)
