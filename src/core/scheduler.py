"""Background task scheduler using APScheduler.

Manages scheduled jobs for:
- Delivery queue polling (every DELIVERY_POLL_INTERVAL_SECONDS)
- Campaign completion sweep (every minute)
- Release of jobs stuck in processing (every 15 minutes, and once at start)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from apscheduler.schedulers.asyncio import (  # type: ignore[import-untyped]
    AsyncIOScheduler,
)
from apscheduler.triggers.interval import (  # type: ignore[import-untyped]
    IntervalTrigger,
)

from services.delivery.bulk import BulkCampaignService
from services.delivery.queue import DeliveryQueue


logger = logging.getLogger(__name__)

STALE_CLAIM_AGE = timedelta(minutes=15)

scheduler: AsyncIOScheduler | None = None


async def run_delivery_poll(queue: DeliveryQueue) -> None:
    """Scheduled job: send due delivery jobs, most urgent first."""
    try:
        await queue.process_due()
    except Exception as e:
        logger.error(f"Delivery poll failed: {e}", exc_info=True)


async def run_campaign_sweep(campaigns: BulkCampaignService) -> None:
    """Scheduled job: close campaigns whose retries have all settled."""
    try:
        completed = await campaigns.refresh_campaign_status()
        if completed > 0:
            logger.info(f"Campaign sweep: {completed} campaign(s) completed")
    except Exception as e:
        logger.error(f"Campaign sweep failed: {e}", exc_info=True)


async def run_stale_claim_release(queue: DeliveryQueue) -> None:
    """Scheduled job: return jobs left in processing by a dead worker."""
    try:
        await queue.release_stale_claims(STALE_CLAIM_AGE)
    except Exception as e:
        logger.error(f"Stale claim release failed: {e}", exc_info=True)


def setup_scheduler(
    queue: DeliveryQueue, campaigns: BulkCampaignService
) -> AsyncIOScheduler:
    """Initialize APScheduler with the delivery jobs.

    The poll never overlaps itself (max_instances=1) and missed runs are
    coalesced into one.
    """
    global scheduler
    scheduler = AsyncIOScheduler(timezone="UTC")
    interval = queue.config.poll_interval_seconds

    scheduler.add_job(
        run_delivery_poll,
        trigger=IntervalTrigger(seconds=interval),
        args=[queue],
        id="delivery_poll",
        name="Delivery queue poll",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        run_campaign_sweep,
        trigger=IntervalTrigger(minutes=1),
        args=[campaigns],
        id="campaign_sweep",
        name="Bulk campaign completion sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        run_stale_claim_release,
        trigger=IntervalTrigger(minutes=15),
        args=[queue],
        id="release_stale_claims",
        name="Release stale delivery claims",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        f"Scheduler configured: delivery poll ({interval}s), "
        "campaign sweep (1 min), stale claim release (15 min)"
    )
    return scheduler


@asynccontextmanager
async def scheduler_lifespan(
    queue: DeliveryQueue, campaigns: BulkCampaignService
) -> AsyncGenerator[None, None]:
    """Context manager for scheduler lifecycle.

    Usage in FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with scheduler_lifespan(queue, campaigns):
                yield
    """
    await run_stale_claim_release(queue)
    setup_scheduler(queue, campaigns)
    if scheduler:
        scheduler.start()
        logger.info("Background scheduler started")
    try:
        yield
    finally:
        if scheduler and scheduler.running:
            scheduler.shutdown(wait=True)
            logger.info("Background scheduler shut down")
