"""Mirrored SmartSuite records: projects, videos, and the scripts attached to videos."""
from datetime import date, datetime
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel

from scriptsync.clock import utcnow


class Project(SQLModel, table=True):
    """One row per SmartSuite project record, keyed by the SmartSuite id."""

    id: str = Field(primary_key=True)
    title: str
    due_date: Optional[date] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    videos: List["Video"] = Relationship(back_populates="project")


class Video(SQLModel, table=True):
    """One row per SmartSuite video record, keyed by the SmartSuite id."""

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="project.id", index=True)
    title: str
    main_stream_status: Optional[str] = None
    vo_stream_status: Optional[str] = None
    production_type: Optional[str] = None  # "new", "amend", "reuse", ...

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    project: Optional[Project] = Relationship(back_populates="videos")


class Script(SQLModel, table=True):
    """
    Editor-owned script for a video. Sync only creates the empty row;
    the editor owns its content afterwards.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    video_id: str = Field(foreign_key="video.id", unique=True, index=True)
    plain_text: str = ""
    component_count: int = 0

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
