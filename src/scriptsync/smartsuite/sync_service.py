"""
SmartSuiteSyncService: mirrors SmartSuite projects and videos into the DB.

Flow for one run:
  1. Acquire the sync_metadata lock (idle → running). If another run holds
     it, return Failure(sync-in-progress) immediately; no retry, no queue.
  2. Fetch all projects → normalize → batched upsert Project rows.
  3. For each project (concurrently, bounded): fetch videos → drop reused
     videos → batched upsert Video rows → create empty Script rows for
     videos that have none.
  4. Release the lock with success (status idle, sync_count + 1) and return
     the SyncResult, whatever per-item errors were collected.

Failures of a single fetch, record or upsert batch are recorded in
SyncResult.errors and the run carries on; one project's failure never aborts
its siblings. A batch that fails to commit leaves earlier batches in place,
and the synced counts include them. Only an exception escaping the loop
itself releases the lock with failure (status error) and is re-raised as
SyncFailedError.

Idempotency: rows are keyed by the SmartSuite record id. Re-running with the
same upstream data writes nothing, and updated_at only moves when a field
value actually changes.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from scriptsync.clock import utcnow
from scriptsync.db.lock import DistributedLock
from scriptsync.models.project import Project, Script, Video
from scriptsync.models.sync import SyncResult
from scriptsync.resilience import Failure, FailureReason, Success
from scriptsync.smartsuite.client import SmartSuiteClient
from scriptsync.smartsuite.normalizer import (
    is_reused_video,
    normalize_project,
    normalize_video,
)

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 500


class SyncFailedError(RuntimeError):
    """An unexpected exception aborted the run; the lock was left in error."""


class UpsertError(RuntimeError):
    """A batch failed to commit. Rows from earlier batches stay committed."""

    def __init__(self, committed_ids: List[str], cause: Exception):
        super().__init__(str(cause))
        self.committed_ids = committed_ids


class SyncPhase:
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class _RunLogAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[sync {self.extra['run_id']}] {msg}", kwargs


class SmartSuiteSyncService:
    """Orchestrates one SmartSuite → DB sync run under the distributed lock."""

    def __init__(
        self,
        client,
        engine,
        lock: Optional[DistributedLock] = None,
        video_fetch_concurrency: int = 4,
    ):
        """
        Args:
            client: SmartSuiteClient instance (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            lock: DistributedLock; defaults to the singleton row on engine.
            video_fetch_concurrency: Max projects whose videos are fetched at once.
        """
        self.client = client
        self.engine = engine
        self.lock = lock or DistributedLock(engine)
        self.video_fetch_concurrency = max(1, video_fetch_concurrency)
        self.phase = SyncPhase.IDLE

    async def run(self) -> Union[Success[SyncResult], Failure]:
        """
        Execute one sync run.

        Returns:
            Success(SyncResult) when the run completed (possibly with
            per-item errors), or Failure(sync-in-progress) when the lock is
            held elsewhere.

        Raises:
            SyncFailedError: if an exception escaped the run. The lock row
            is set to error with the message before raising.
        """
        log = _RunLogAdapter(logger, {"run_id": uuid.uuid4().hex[:8]})

        self.phase = SyncPhase.ACQUIRING
        if not self.lock.acquire():
            self.phase = SyncPhase.IDLE
            log.info("Another sync is running; skipping")
            return Failure(
                error="Sync already in progress or failed to acquire lock",
                reason=FailureReason.SYNC_IN_PROGRESS,
            )

        self.phase = SyncPhase.RUNNING
        log.info("Sync started")
        result = SyncResult()

        try:
            project_ids = await self._sync_projects(result, log)
            await self._sync_all_videos(project_ids, result, log)
            self.lock.release_success()
        except Exception as exc:
            self.phase = SyncPhase.FAILED
            message = str(exc) or exc.__class__.__name__
            log.exception("Sync failed: %s", message)
            self.lock.release_failure(message)
            raise SyncFailedError(message) from exc

        self.phase = SyncPhase.COMPLETED
        log.info(
            "Sync completed: projects %d/%d, videos %d/%d, %d errors",
            result.projects_synced, result.projects_found,
            result.videos_synced, result.videos_found, len(result.errors),
        )
        return Success(result)

    # ─── Projects ─────────────────────────────────────────────────────────────

    async def _sync_projects(self, result: SyncResult, log) -> List[str]:
        """Fetch and upsert projects. Returns the ids whose videos should sync."""
        outcome = await self.client.fetch_projects()
        if not outcome.success:
            message = f"Project fetch error: {outcome.error}"
            log.error(message)
            result.errors.append(message)
            return []

        raw_projects = outcome.value
        result.projects_found = len(raw_projects)
        rows = _dedupe(_normalize_each(
            raw_projects, normalize_project, "Project normalize error", result, log
        ))

        try:
            synced = self._upsert(Project, rows)
        except UpsertError as exc:
            message = f"Project upsert error: {exc}"
            log.error(message)
            result.errors.append(message)
            synced = exc.committed_ids
        result.projects_synced = len(synced)

        return synced

    # ─── Videos ───────────────────────────────────────────────────────────────

    async def _sync_all_videos(self, project_ids: List[str], result: SyncResult, log) -> None:
        semaphore = asyncio.Semaphore(self.video_fetch_concurrency)
        await asyncio.gather(*(
            self._sync_project_videos(pid, semaphore, result, log) for pid in project_ids
        ))

    async def _sync_project_videos(
        self,
        project_id: str,
        semaphore: asyncio.Semaphore,
        result: SyncResult,
        log,
    ) -> None:
        """Sync one project's videos; every error stays inside this project."""
        async with semaphore:
            try:
                outcome = await self.client.fetch_videos(project_id)
                if not outcome.success:
                    message = f"Video fetch error for project {project_id}: {outcome.error}"
                    log.error(message)
                    result.errors.append(message)
                    return

                raw_videos = outcome.value
                result.videos_found += len(raw_videos)
                rows = _dedupe(_normalize_each(
                    [v for v in raw_videos if not is_reused_video(v)],
                    lambda v: normalize_video(v, project_id),
                    f"Video normalize error for project {project_id}",
                    result,
                    log,
                ))
                if not rows:
                    return

                try:
                    synced = self._upsert(Video, rows)
                except UpsertError as exc:
                    message = f"Video upsert error for project {project_id}: {exc}"
                    log.error(message)
                    result.errors.append(message)
                    synced = exc.committed_ids
                result.videos_synced += len(synced)

                if synced:
                    self._create_missing_scripts(synced)

            except Exception as exc:
                message = f"Video sync error for project {project_id}: {exc}"
                log.error(message)
                result.errors.append(message)

    # ─── Persistence helpers ──────────────────────────────────────────────────

    def _upsert(self, model, rows: List[Dict[str, Any]]) -> List[str]:
        """
        Insert-or-update rows keyed by id, in batches, one transaction per batch.

        Existing rows only get a new updated_at when a field value differs.

        Returns:
            Ids of every row written.

        Raises:
            UpsertError: when a batch fails; carries the ids committed by the
            batches before it.
        """
        committed: List[str] = []
        for start in range(0, len(rows), UPSERT_BATCH_SIZE):
            batch = {row["id"]: row for row in rows[start:start + UPSERT_BATCH_SIZE]}
            try:
                self._upsert_batch(model, batch)
            except SQLAlchemyError as exc:
                raise UpsertError(committed, exc) from exc
            committed.extend(batch)
        return committed

    def _upsert_batch(self, model, batch: Dict[str, Dict[str, Any]]) -> None:
        now = utcnow()
        with Session(self.engine) as s:
            existing = {
                obj.id: obj
                for obj in s.exec(select(model).where(model.id.in_(list(batch))))
            }
            for row_id, fields in batch.items():
                obj = existing.get(row_id)
                if obj is None:
                    s.add(model(**fields, created_at=now, updated_at=now))
                    continue
                changed = False
                for k, v in fields.items():
                    if getattr(obj, k) != v:
                        setattr(obj, k, v)
                        changed = True
                if changed:
                    obj.updated_at = now
                    s.add(obj)
            s.commit()

    def _create_missing_scripts(self, video_ids: List[str]) -> None:
        """Create an empty Script for each video that does not have one yet."""
        with Session(self.engine) as s:
            have = set(s.exec(
                select(Script.video_id).where(Script.video_id.in_(video_ids))
            ).all())
            for video_id in video_ids:
                if video_id not in have:
                    s.add(Script(video_id=video_id, plain_text="", component_count=0))
            s.commit()


def _normalize_each(
    raws: List[Dict[str, Any]],
    normalize: Callable[[Dict[str, Any]], Dict[str, Any]],
    label: str,
    result: SyncResult,
    log,
) -> List[Dict[str, Any]]:
    """Normalize records one by one; a bad record is reported and skipped."""
    rows = []
    for raw in raws:
        try:
            rows.append(normalize(raw))
        except ValueError as exc:
            message = f"{label}: {exc}"
            log.error(message)
            result.errors.append(message)
    return rows


def _dedupe(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the last row for each id, preserving first-seen order."""
    by_id: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        by_id[row["id"]] = row
    return list(by_id.values())


def build_sync_service(settings, engine, runtime) -> SmartSuiteSyncService:
    """
    Wire a SmartSuiteSyncService from Settings and the process SyncRuntime.

    Raises:
        ConfigurationError: if SmartSuite credentials are missing. Raised
        before the lock is touched or any request is sent.
    """
    client = SmartSuiteClient.from_settings(settings, runtime)
    return SmartSuiteSyncService(
        client=client,
        engine=engine,
        video_fetch_concurrency=settings.video_fetch_concurrency,
    )
