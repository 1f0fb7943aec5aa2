"""Sync control-state model and the per-run result accumulator."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import Field, SQLModel

from scriptsync.clock import utcnow

LOCK_ROW_ID = "singleton"


class SyncStatus:
    """
    Values of sync_metadata.status.

    Valid transitions:
        IDLE → RUNNING        (atomic conditional update, one winner)
        RUNNING → IDLE        (run completed, possibly with per-item errors)
        RUNNING → ERROR       (an exception escaped the run)
        * → IDLE              (manual force-release only)
    """

    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"

    ALL = frozenset({IDLE, RUNNING, ERROR})


class SyncMetadata(SQLModel, table=True):
    """Singleton row that doubles as the cluster-wide sync lock."""

    __tablename__ = "sync_metadata"

    id: str = Field(default=LOCK_ROW_ID, primary_key=True)
    status: str = Field(default=SyncStatus.IDLE)
    last_sync_started_at: Optional[datetime] = None
    last_sync_completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    sync_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SyncResult(BaseModel):
    """Counts and errors accumulated over one orchestration run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    projects_found: int = 0
    projects_synced: int = 0
    videos_found: int = 0
    videos_synced: int = 0
    errors: List[str] = []

    def to_payload(self) -> dict:
        """camelCase dict returned to the trigger caller."""
        return self.model_dump(by_alias=True)
