"""Reconciliation sweep for negotiations accepted on both sides but never settled.

Settlement normally happens in the request that completes mutual acceptance.
This task catches anything that slipped through and settles it through the
same idempotent path.
"""

import logging

from marketplace.core.config import settings
from marketplace.core.errors import StoreUnavailableError
from marketplace.db.session import async_session_factory
from marketplace.workers import celery_app, run_async

logger = logging.getLogger(__name__)


async def sweep_once(limit: int) -> int:
    from marketplace.services.orchestrator import settle_pending

    async with async_session_factory() as db:
        count = await settle_pending(db, limit=limit)
    if count:
        logger.info("Settlement sweep settled %d negotiations", count)
    return count


@celery_app.task(
    name="settle_accepted_negotiations", bind=True, max_retries=3, default_retry_delay=60
)
def settle_accepted_negotiations(self) -> int:
    """Periodic task: settle mutually accepted negotiations lacking a deal."""
    try:
        return run_async(sweep_once(settings.settlement_sweep_batch))
    except StoreUnavailableError as exc:
        logger.warning("settle_accepted_negotiations: store unavailable, retrying")
        raise self.retry(exc=exc)
