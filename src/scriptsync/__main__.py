"""
Main entrypoint.

FastAPI runs separately under uvicorn (for the trigger endpoint).

Usage:
    python -m scriptsync            # starts the nightly sync scheduler
    python -m scriptsync sync       # runs one sync now and prints the result
    python -m scriptsync unlock     # force-releases a stuck sync lock
    uvicorn scriptsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_unlock() -> None:
    from scriptsync.db.engine import get_engine
    from scriptsync.db.lock import DistributedLock

    lock = DistributedLock(get_engine())
    row = lock.status()
    if row is None:
        logger.error("sync_metadata row is missing")
        sys.exit(1)
    logger.info(
        "Lock status: %s (started %s, last error %s)",
        row.status, row.last_sync_started_at, row.last_error,
    )
    if lock.force_release():
        logger.info("Lock released.")
    else:
        logger.info("Lock was already idle; nothing to do.")


async def _run_once() -> int:
    from scriptsync.config import ConfigurationError, get_settings
    from scriptsync.db.engine import get_engine
    from scriptsync.runtime import build_runtime
    from scriptsync.smartsuite.sync_service import build_sync_service

    settings = get_settings()
    runtime = build_runtime(settings)
    try:
        service = build_sync_service(settings, get_engine(), runtime)
        outcome = await service.run()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2
    finally:
        await runtime.aclose()

    if not outcome.success:
        logger.warning("%s", outcome.error)
        return 3
    print(json.dumps(outcome.value.to_payload(), indent=2))
    return 0


async def _run_scheduler() -> None:
    from scriptsync.config import get_settings
    from scriptsync.db.engine import get_engine
    from scriptsync.runtime import build_runtime
    from scriptsync.scheduler.jobs import build_scheduler

    settings = get_settings()
    settings.require_smartsuite()
    engine = get_engine()
    runtime = build_runtime(settings)

    scheduler = build_scheduler(engine, runtime)
    scheduler.start()
    logger.info("Scheduler started (nightly sync at %02d:00 UTC)", settings.sync_hour)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await runtime.aclose()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument
    command = sys.argv[1] if len(sys.argv) > 1 else ""
    if command == "unlock":
        _run_unlock()
    elif command == "sync":
        sys.exit(asyncio.run(_run_once()))
    else:
        asyncio.run(_run_scheduler())
