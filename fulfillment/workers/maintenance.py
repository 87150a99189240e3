"""
Maintenance Worker.

Prunes webhook idempotency rows once gateways can no longer redeliver them.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from fulfillment.config import settings
from fulfillment.database import get_db_context
from fulfillment.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def prune_processed_events(self, retention_days: Optional[int] = None):
    """
    Celery task to delete old processed_events rows.

    Runs daily. Retention defaults to PROCESSED_EVENT_RETENTION_DAYS.
    """
    days = retention_days or settings.processed_event_retention_days
    try:
        deleted = asyncio.run(_prune(days))
        logger.info(f"Processed event pruning complete: {deleted} row(s) removed")
        return {"deleted": deleted, "retention_days": days}
    except Exception as e:
        logger.error(f"Processed event pruning failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def _prune(retention_days: int) -> int:
    """Async implementation of the pruning job."""
    from fulfillment.services.event_service import prune_processed_events as prune

    async with get_db_context() as db:
        return await prune(db, timedelta(days=retention_days))
