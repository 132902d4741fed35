"""Payment maintenance tasks."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from celery import shared_task

from core.logging_config import get_logger
from infrastructure.composition import build_payment_lifecycle
from infrastructure.database import engine
from ..utils.base_task import BaseTask

logger = get_logger(__name__)


async def _expire(now: Optional[datetime]) -> int:
    lifecycle = build_payment_lifecycle()
    try:
        return await lifecycle.expire_stale_pix_payments(now)
    finally:
        # pooled connections are bound to the loop created by asyncio.run
        await engine.dispose()


@shared_task(
    name="payments.expire_stale_pix",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=60,
    retry_kwargs={"max_retries": 3},
)
def expire_stale_pix(self, now: Optional[str] = None) -> int:
    """Expire open PIX payments whose ``expires_at`` has passed.

    ``now`` is an optional ISO-8601 cutoff, mostly for manual reruns.
    """
    cutoff = datetime.fromisoformat(now) if now else None
    count = asyncio.run(_expire(cutoff))
    logger.info("pix_sweep_finished", task_id=self.request.id, expired=count)
    return count
