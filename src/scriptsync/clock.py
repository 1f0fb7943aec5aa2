"""Naive-UTC timestamp helper shared by the models and the sync lock."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching how SQLite stores datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
