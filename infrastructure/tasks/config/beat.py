"""Celery beat schedule.

The PIX sweep closes payments whose QR code outlived its validity window.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    "expire-stale-pix": {
        "task": "payments.expire_stale_pix",
        "schedule": float(payment_settings.sweep_interval_seconds),
        "options": {"queue": "high", "expires": payment_settings.sweep_interval_seconds},
    },
}
