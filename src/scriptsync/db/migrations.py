"""
Provisioning for the sync control state.

The sync_metadata singleton row must exist before the first acquire; the
lock never inserts it, it only updates it. Each step here is idempotent.

Called automatically from get_engine() after create_all() so both fresh
installs and existing DBs are handled without manual steps.
"""
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from scriptsync.clock import utcnow
from scriptsync.models.sync import LOCK_ROW_ID, SyncMetadata, SyncStatus


def run_migrations(engine) -> None:
    """Apply all pending provisioning steps. Safe to call multiple times.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    provision_lock_row(engine)


def provision_lock_row(engine) -> bool:
    """Insert the singleton sync_metadata row if it is absent.

    Returns:
        True if the row was created by this call, False if it already existed.
    """
    with Session(engine) as s:
        if s.get(SyncMetadata, LOCK_ROW_ID) is not None:
            return False
        now = utcnow()
        s.add(SyncMetadata(
            id=LOCK_ROW_ID,
            status=SyncStatus.IDLE,
            sync_count=0,
            created_at=now,
            updated_at=now,
        ))
        try:
            s.commit()
        except IntegrityError:
            # Another process provisioned it between our read and insert
            s.rollback()
            return False
    return True
