"""APScheduler setup for periodic sync jobs."""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notion_mirror.core.config import SyncConfig, get_settings
from notion_mirror.core.database import engine
from notion_mirror.core.exceptions import NotionMirrorError
from notion_mirror.services.sync import build_sync_service

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def run_scheduled_sync():
    """Run one incremental sync."""
    logger.info("Starting scheduled sync job")

    try:
        config = SyncConfig.from_settings(get_settings())
    except NotionMirrorError as e:
        logger.error(f"Scheduled sync skipped: {e}")
        return

    sync_service = build_sync_service(config, engine)
    try:
        await sync_service.initialize()
        result = await sync_service.sync()
        logger.info(f"Scheduled sync completed: {result.stats.model_dump()}")
    except Exception as e:
        # Already recorded in sync_log by the service
        logger.error(f"Scheduled sync failed: {e}")
    finally:
        await sync_service.close()


def start_scheduler():
    """Start the APScheduler if an interval is configured."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already started")
        return

    settings = get_settings()
    if settings.sync_interval_minutes <= 0:
        logger.info("Periodic sync disabled (sync_interval_minutes=0)")
        return

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_scheduled_sync,
        IntervalTrigger(minutes=settings.sync_interval_minutes),
        id="notion_sync",
        name="Incremental Notion sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started - sync every {settings.sync_interval_minutes} minutes")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
