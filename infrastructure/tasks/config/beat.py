"""Celery beat schedule configuration.

The stale payment sweeper is the only periodic job: it re-checks orders
whose webhook and redirect never arrived.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    "payments-reconcile-stale-orders": {
        "task": "payments.reconcile_stale_orders",
        "schedule": float(payment_settings.sweep_interval_seconds),
        "options": {"queue": "default"},
    },
}
