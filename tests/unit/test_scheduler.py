"""Tests for APScheduler job configuration and nightly sync job body."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from scriptsync.models.sync import SyncResult
from scriptsync.resilience import Failure, FailureReason, Success
from scriptsync.scheduler.jobs import build_scheduler, _nightly_sync


class TestBuildScheduler:
    def test_returns_scheduler(self):
        scheduler = build_scheduler(MagicMock(), MagicMock())
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_nightly_sync_job_registered(self):
        scheduler = build_scheduler(MagicMock(), MagicMock())
        job_ids = [job.id for job in scheduler.get_jobs()]
        assert "nightly_sync" in job_ids

    def test_nightly_sync_is_cron(self):
        scheduler = build_scheduler(MagicMock(), MagicMock())
        job = next(j for j in scheduler.get_jobs() if j.id == "nightly_sync")
        assert job.trigger.__class__.__name__ == "CronTrigger"

    def test_sync_hour_from_settings(self):
        """Scheduler respects the SYNC_HOUR setting."""
        with patch("scriptsync.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.sync_hour = 4
            scheduler = build_scheduler(MagicMock(), MagicMock())

        job = next(j for j in scheduler.get_jobs() if j.id == "nightly_sync")
        fields = {f.name: f for f in job.trigger.fields}
        assert str(fields["hour"]) == "4"

    def test_single_instance(self):
        """A slow nightly run must not overlap the next one."""
        scheduler = build_scheduler(MagicMock(), MagicMock())
        job = next(j for j in scheduler.get_jobs() if j.id == "nightly_sync")
        assert job.max_instances == 1

    def test_scheduler_not_running_on_creation(self):
        """build_scheduler should not auto-start."""
        scheduler = build_scheduler(MagicMock(), MagicMock())
        assert not scheduler.running


# ─── _nightly_sync job body ────────────────────────────────────────────────────

class TestNightlySyncJob:
    """Tests for the _nightly_sync() async function.

    build_sync_service is imported lazily inside the function body, so it is
    patched at its source module path.
    """

    @pytest.mark.asyncio
    async def test_runs_one_sync(self):
        service = MagicMock()
        service.run = AsyncMock(return_value=Success(SyncResult(projects_found=1)))
        engine, runtime = MagicMock(), MagicMock()

        with patch(
            "scriptsync.smartsuite.sync_service.build_sync_service", return_value=service
        ) as build:
            await _nightly_sync(engine=engine, runtime=runtime)

        service.run.assert_awaited_once()
        assert build.call_args.args[1] is engine
        assert build.call_args.args[2] is runtime

    @pytest.mark.asyncio
    async def test_lock_held_is_skipped(self, caplog):
        service = MagicMock()
        service.run = AsyncMock(
            return_value=Failure("Sync already in progress", FailureReason.SYNC_IN_PROGRESS)
        )

        with patch("scriptsync.smartsuite.sync_service.build_sync_service", return_value=service):
            with caplog.at_level("INFO", logger="scriptsync.scheduler.jobs"):
                await _nightly_sync(engine=MagicMock(), runtime=MagicMock())

        assert "skipped" in caplog.text

    @pytest.mark.asyncio
    async def test_exception_does_not_propagate(self):
        """Nightly sync catches all exceptions so the scheduler stays alive."""
        service = MagicMock()
        service.run = AsyncMock(side_effect=RuntimeError("database is locked"))

        with patch("scriptsync.smartsuite.sync_service.build_sync_service", return_value=service):
            # Should not raise
            await _nightly_sync(engine=MagicMock(), runtime=MagicMock())

    @pytest.mark.asyncio
    async def test_configuration_error_does_not_propagate(self):
        from scriptsync.config import ConfigurationError

        with patch(
            "scriptsync.smartsuite.sync_service.build_sync_service",
            side_effect=ConfigurationError("Missing required settings: SMARTSUITE_API_KEY"),
        ):
            await _nightly_sync(engine=MagicMock(), runtime=MagicMock())
