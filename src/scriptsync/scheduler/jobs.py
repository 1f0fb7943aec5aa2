"""
APScheduler jobs for background sync.

The nightly sync catches anything the on-demand trigger endpoint missed.
If an API-triggered run is in progress when the job fires, the job sees the
lock held and skips; it does not wait or retry.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from scriptsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine, runtime) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync service.
        runtime: SyncRuntime shared with every other SmartSuite caller.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _nightly_sync,
        trigger="cron",
        hour=settings.sync_hour,
        minute=0,
        id="nightly_sync",
        replace_existing=True,
        max_instances=1,
        kwargs={"engine": engine, "runtime": runtime},
    )

    return scheduler


async def _nightly_sync(engine, runtime) -> None:
    """Nightly job: run one full SmartSuite sync."""
    from scriptsync.smartsuite.sync_service import build_sync_service

    settings = get_settings()
    logger.info("Nightly sync starting")

    try:
        service = build_sync_service(settings, engine, runtime)
        outcome = await service.run()
    except Exception as exc:
        logger.error("Nightly sync failed: %s", exc)
        return

    if not outcome.success:
        logger.info("Nightly sync skipped: %s", outcome.error)
        return
    result = outcome.value
    logger.info(
        "Nightly sync done: %d projects, %d videos, %d errors",
        result.projects_synced, result.videos_synced, len(result.errors),
    )
