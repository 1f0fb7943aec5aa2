"""
Cluster-wide single-flight lock backed by the sync_metadata singleton row.

acquire() is one conditional UPDATE (status idle → running). The database
applies it atomically, so across any number of processes exactly one caller
sees an affected row; everyone else sees zero and must treat the lock as held
elsewhere. There is no read-then-write anywhere in the acquire path.

There is no heartbeat or TTL. A process that dies while holding the lock
leaves the row in "running" until force_release() is called
(`python -m scriptsync unlock`).
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session

from scriptsync.clock import utcnow
from scriptsync.models.sync import LOCK_ROW_ID, SyncMetadata, SyncStatus

logger = logging.getLogger(__name__)


class DistributedLock:
    """Atomic compare-and-set lock on one sync_metadata row."""

    def __init__(self, engine, lock_id: str = LOCK_ROW_ID):
        self.engine = engine
        self.lock_id = lock_id

    def acquire(self) -> bool:
        """Flip the row from idle to running. Returns False if it was not idle."""
        now = utcnow()
        stmt = (
            update(SyncMetadata)
            .where(SyncMetadata.id == self.lock_id)
            .where(SyncMetadata.status == SyncStatus.IDLE)
            .values(status=SyncStatus.RUNNING, last_sync_started_at=now, updated_at=now)
        )
        with self.engine.begin() as conn:
            acquired = conn.execute(stmt).rowcount == 1
        if acquired:
            logger.info("Sync lock acquired")
        else:
            logger.info("Sync lock not acquired; held elsewhere or not idle")
        return acquired

    def release_success(self) -> None:
        """Return the row to idle and bump sync_count in the same statement."""
        now = utcnow()
        stmt = (
            update(SyncMetadata)
            .where(SyncMetadata.id == self.lock_id)
            .values(
                status=SyncStatus.IDLE,
                last_sync_completed_at=now,
                last_error=None,
                sync_count=SyncMetadata.sync_count + 1,
                updated_at=now,
            )
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
        logger.info("Sync lock released (success)")

    def release_failure(self, message: str) -> None:
        """Park the row in error with the failure message."""
        stmt = (
            update(SyncMetadata)
            .where(SyncMetadata.id == self.lock_id)
            .values(status=SyncStatus.ERROR, last_error=message, updated_at=utcnow())
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
        logger.warning("Sync lock released (failure): %s", message)

    def force_release(self, reason: str = "Manual lock release - sync was stuck") -> bool:
        """
        Admin recovery: put a running or errored row back to idle.

        Returns:
            True if the row was changed, False if it was already idle.
        """
        stmt = (
            update(SyncMetadata)
            .where(SyncMetadata.id == self.lock_id)
            .where(SyncMetadata.status != SyncStatus.IDLE)
            .values(status=SyncStatus.IDLE, last_error=reason, updated_at=utcnow())
        )
        with self.engine.begin() as conn:
            changed = conn.execute(stmt).rowcount == 1
        if changed:
            logger.warning("Sync lock force-released: %s", reason)
        return changed

    def status(self) -> Optional[SyncMetadata]:
        """Current lock row, or None if it has not been provisioned."""
        with Session(self.engine) as s:
            return s.get(SyncMetadata, self.lock_id)
