"""Worker: release delivery claims left behind by a crashed dispatcher."""
from __future__ import annotations

from datetime import datetime, timedelta

from webhook_service.db.pool import get_pool
from webhook_service.repositories.webhooks import WebhookDeliveryRepository
from webhook_service.settings import settings


async def webhook_reclaim_stale_claims(now: datetime) -> str | None:
    """Release claims older than ``webhook_claim_timeout_minutes``."""
    pool = await get_pool()
    cutoff = now - timedelta(minutes=settings.webhook_claim_timeout_minutes)
    released = await WebhookDeliveryRepository(pool).release_stale_claims(cutoff)
    return f"released={released}" if released else None
