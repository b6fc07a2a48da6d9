"""Celery beat schedule configuration.

Periodic sweeps that keep order state honest when no request arrives to
trigger them: ledger-to-order sync and expiry of abandoned PENDING orders.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    "payments-reconcile-statuses": {
        "task": "payments.reconcile_statuses",
        "schedule": float(settings.checkout.reconcile_interval_seconds),
    },
    "payments-expire-pending": {
        "task": "payments.expire_pending",
        "schedule": float(settings.checkout.expiry_interval_seconds),
    },
}
