"""
Integration tests for SmartSuiteSyncService.

Uses AsyncMock for the SmartSuite client and an in-memory SQLite DB.
No real network calls are made.
"""
import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session, select

from scriptsync.db.lock import DistributedLock
from scriptsync.models.project import Project, Script, Video
from scriptsync.models.sync import LOCK_ROW_ID, SyncMetadata, SyncStatus
from scriptsync.resilience import Failure, FailureReason, Success
from scriptsync.smartsuite import sync_service
from scriptsync.smartsuite.sync_service import (
    SmartSuiteSyncService,
    SyncFailedError,
    SyncPhase,
)

FIXTURES = Path(__file__).parent.parent / "fixtures"

PROJECTS = json.loads((FIXTURES / "smartsuite_projects.json").read_text())["items"]
VIDEOS = json.loads((FIXTURES / "smartsuite_videos.json").read_text())["items"]


# ─── Mock SmartSuite client ───────────────────────────────────────────────────

def _project(pid, title=None):
    return {"id": pid, "title": title or f"Project {pid}"}


def _video(vid, title=None, production_type="new"):
    return {
        "id": vid,
        "title": title or f"Video {vid}",
        "mainStreamStatus": {"value": "ready"},
        "voStreamStatus": {"value": "not_started"},
        "productionType": production_type,
    }


def make_mock_client(projects=None, videos_by_project=None):
    """
    projects: list of raw project records (or a Failure)
    videos_by_project: {project_id: list of raw videos, Failure, or Exception}
    """
    projects = [_project("p1"), _project("p2")] if projects is None else projects
    videos_by_project = videos_by_project or {}

    client = AsyncMock()
    client.fetch_projects = AsyncMock(
        return_value=projects if isinstance(projects, Failure) else Success(projects)
    )

    async def fetch_videos(project_id):
        value = videos_by_project.get(project_id, [])
        if isinstance(value, Exception):
            raise value
        if isinstance(value, Failure):
            return value
        return Success(value)

    client.fetch_videos = AsyncMock(side_effect=fetch_videos)
    return client


def _lock_row(engine) -> SyncMetadata:
    with Session(engine) as s:
        return s.get(SyncMetadata, LOCK_ROW_ID)


# ─── Happy path ───────────────────────────────────────────────────────────────

class TestSyncRun:
    async def test_end_to_end_payload(self, engine):
        client = make_mock_client(videos_by_project={
            "p1": [_video("v1")],
            "p2": [_video("v2")],
        })
        service = SmartSuiteSyncService(client=client, engine=engine)

        outcome = await service.run()

        assert outcome.success
        assert outcome.value.to_payload() == {
            "projectsFound": 2,
            "projectsSynced": 2,
            "videosFound": 2,
            "videosSynced": 2,
            "errors": [],
        }
        assert service.phase == SyncPhase.COMPLETED

    async def test_rows_written(self, engine, test_session):
        client = make_mock_client(videos_by_project={"p1": [_video("v1")], "p2": [_video("v2")]})
        await SmartSuiteSyncService(client=client, engine=engine).run()

        projects = test_session.exec(select(Project)).all()
        videos = test_session.exec(select(Video)).all()
        scripts = test_session.exec(select(Script)).all()
        assert {p.id for p in projects} == {"p1", "p2"}
        assert {(v.id, v.project_id) for v in videos} == {("v1", "p1"), ("v2", "p2")}
        assert {s.video_id for s in scripts} == {"v1", "v2"}
        assert all(s.plain_text == "" and s.component_count == 0 for s in scripts)

    async def test_lock_released_to_idle(self, engine):
        client = make_mock_client()
        await SmartSuiteSyncService(client=client, engine=engine).run()

        row = _lock_row(engine)
        assert row.status == SyncStatus.IDLE
        assert row.sync_count == 1
        assert row.last_error is None
        assert row.last_sync_completed_at is not None

    async def test_lock_running_during_fetch(self, engine):
        seen = {}
        client = make_mock_client()

        async def fetch_projects():
            seen["status"] = _lock_row(engine).status
            return Success([])

        client.fetch_projects = AsyncMock(side_effect=fetch_projects)
        await SmartSuiteSyncService(client=client, engine=engine).run()

        assert seen["status"] == SyncStatus.RUNNING

    async def test_fixture_records(self, engine, test_session):
        project_id = PROJECTS[0]["id"]
        client = make_mock_client(projects=PROJECTS, videos_by_project={project_id: VIDEOS})

        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        result = outcome.value
        assert result.projects_found == 2
        assert result.videos_found == 2
        assert result.videos_synced == 1  # the reused video is not mirrored
        video = test_session.get(Video, VIDEOS[0]["id"])
        assert video.main_stream_status == "ready"
        assert test_session.get(Video, VIDEOS[1]["id"]) is None


# ─── Failure isolation ────────────────────────────────────────────────────────

class TestPartialFailures:
    async def test_one_project_failure_does_not_abort_others(self, engine, test_session):
        client = make_mock_client(
            projects=[_project("p1"), _project("p2"), _project("p3")],
            videos_by_project={
                "p1": [_video("v1")],
                "p2": RuntimeError("connection reset"),
                "p3": [_video("v3")],
            },
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        result = outcome.value
        assert result.projects_synced == 3
        assert result.videos_synced == 2
        assert result.errors == ["Video sync error for project p2: connection reset"]
        assert {v.id for v in test_session.exec(select(Video)).all()} == {"v1", "v3"}
        assert _lock_row(engine).status == SyncStatus.IDLE

    async def test_video_fetch_failure_recorded(self, engine):
        client = make_mock_client(videos_by_project={
            "p1": Failure("Request failed after 3 attempts: HTTP 500: oops"),
            "p2": [_video("v2")],
        })
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        errors = outcome.value.errors
        assert len(errors) == 1
        assert errors[0].startswith("Video fetch error for project p1:")
        assert outcome.value.videos_synced == 1

    async def test_project_fetch_failure_completes_with_error(self, engine):
        client = make_mock_client(
            projects=Failure("Circuit breaker is open", FailureReason.CIRCUIT_OPEN)
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        assert outcome.success
        assert outcome.value.projects_found == 0
        assert outcome.value.errors == ["Project fetch error: Circuit breaker is open"]
        client.fetch_videos.assert_not_awaited()
        row = _lock_row(engine)
        assert row.status == SyncStatus.IDLE
        assert row.sync_count == 1

    async def test_project_without_id_is_reported_and_skipped(self, engine, test_session):
        client = make_mock_client(
            projects=[_project("p1"), {"title": "no id"}, _project("p3")],
            videos_by_project={"p1": [_video("v1")], "p3": [_video("v3")]},
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        result = outcome.value
        assert result.projects_found == 3
        assert result.projects_synced == 2
        assert result.videos_synced == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Project normalize error:")
        assert {p.id for p in test_session.exec(select(Project)).all()} == {"p1", "p3"}
        row = _lock_row(engine)
        assert row.status == SyncStatus.IDLE
        assert row.sync_count == 1

        again = await SmartSuiteSyncService(client=client, engine=engine).run()
        assert again.success

    async def test_video_without_id_skips_only_that_video(self, engine, test_session):
        client = make_mock_client(
            projects=[_project("p1")],
            videos_by_project={"p1": [_video("v1"), {"title": "no id"}, _video("v3")]},
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        result = outcome.value
        assert result.videos_found == 3
        assert result.videos_synced == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Video normalize error for project p1:")
        assert {v.id for v in test_session.exec(select(Video)).all()} == {"v1", "v3"}
        assert {s.video_id for s in test_session.exec(select(Script)).all()} == {"v1", "v3"}

    async def test_failed_batch_keeps_earlier_batches(self, engine, test_session, monkeypatch):
        monkeypatch.setattr(sync_service, "UPSERT_BATCH_SIZE", 2)
        real_normalize = sync_service.normalize_project

        def normalize_with_bad_title(raw):
            row = real_normalize(raw)
            if row["id"] == "p3":
                row["title"] = None  # violates NOT NULL on commit
            return row

        monkeypatch.setattr(sync_service, "normalize_project", normalize_with_bad_title)
        client = make_mock_client(
            projects=[_project(f"p{i}") for i in range(1, 6)],
            videos_by_project={"p1": [_video("v1")], "p4": [_video("v4")]},
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        result = outcome.value
        assert result.projects_found == 5
        assert result.projects_synced == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Project upsert error:")
        assert {p.id for p in test_session.exec(select(Project)).all()} == {"p1", "p2"}
        # Only committed projects go on to the video phase
        assert sorted(c.args[0] for c in client.fetch_videos.await_args_list) == ["p1", "p2"]
        assert result.videos_synced == 1
        assert _lock_row(engine).status == SyncStatus.IDLE

    async def test_escaping_exception_parks_lock_in_error(self, engine):
        service = SmartSuiteSyncService(client=make_mock_client(), engine=engine)
        service._sync_all_videos = AsyncMock(side_effect=RuntimeError("database is locked"))

        with pytest.raises(SyncFailedError):
            await service.run()

        row = _lock_row(engine)
        assert row.status == SyncStatus.ERROR
        assert row.last_error == "database is locked"
        assert row.sync_count == 0
        assert service.phase == SyncPhase.FAILED

    async def test_error_state_blocks_next_run(self, engine):
        broken = SmartSuiteSyncService(client=make_mock_client(), engine=engine)
        broken._sync_all_videos = AsyncMock(side_effect=RuntimeError("database is locked"))
        with pytest.raises(SyncFailedError):
            await broken.run()

        outcome = await SmartSuiteSyncService(client=make_mock_client(), engine=engine).run()
        assert outcome.reason == FailureReason.SYNC_IN_PROGRESS


# ─── Single flight ────────────────────────────────────────────────────────────

class TestSingleFlight:
    def test_default_lock_targets_engine_row(self, engine):
        service = SmartSuiteSyncService(client=make_mock_client(), engine=engine)
        assert isinstance(service.lock, DistributedLock)
        assert service.lock.engine is engine
        assert service.lock.lock_id == LOCK_ROW_ID

    async def test_lock_held_returns_sync_in_progress(self, engine):
        DistributedLock(engine).acquire()
        client = make_mock_client()
        service = SmartSuiteSyncService(client=client, engine=engine)

        outcome = await service.run()

        assert not outcome.success
        assert outcome.reason == FailureReason.SYNC_IN_PROGRESS
        client.fetch_projects.assert_not_awaited()
        assert service.phase == SyncPhase.IDLE

    async def test_overlapping_runs_one_wins(self, engine):
        gate = asyncio.Event()
        slow_client = make_mock_client()

        async def slow_fetch():
            await gate.wait()
            return Success([])

        slow_client.fetch_projects = AsyncMock(side_effect=slow_fetch)
        first = asyncio.create_task(
            SmartSuiteSyncService(client=slow_client, engine=engine).run()
        )
        await asyncio.sleep(0)

        second = await SmartSuiteSyncService(client=make_mock_client(), engine=engine).run()
        gate.set()
        first_outcome = await first

        assert first_outcome.success
        assert second.reason == FailureReason.SYNC_IN_PROGRESS


# ─── Idempotency ──────────────────────────────────────────────────────────────

class TestIdempotency:
    async def test_rerun_leaves_updated_at_unchanged(self, engine, test_session):
        videos = {"p1": [_video("v1")], "p2": [_video("v2")]}
        await SmartSuiteSyncService(client=make_mock_client(videos_by_project=videos), engine=engine).run()
        before = {v.id: v.updated_at for v in test_session.exec(select(Video)).all()}

        await SmartSuiteSyncService(client=make_mock_client(videos_by_project=videos), engine=engine).run()
        test_session.expire_all()
        after = {v.id: v.updated_at for v in test_session.exec(select(Video)).all()}

        assert before == after
        assert len(test_session.exec(select(Script)).all()) == 2
        assert _lock_row(engine).sync_count == 2

    async def test_changed_title_moves_updated_at(self, engine, test_session):
        await SmartSuiteSyncService(
            client=make_mock_client(projects=[_project("p1", "Old")]), engine=engine
        ).run()
        before = test_session.get(Project, "p1").updated_at

        await asyncio.sleep(0.01)
        await SmartSuiteSyncService(
            client=make_mock_client(projects=[_project("p1", "New")]), engine=engine
        ).run()
        test_session.expire_all()
        project = test_session.get(Project, "p1")

        assert project.title == "New"
        assert project.updated_at > before

    async def test_existing_script_preserved(self, engine, test_session):
        videos = {"p1": [_video("v1")]}
        await SmartSuiteSyncService(
            client=make_mock_client(projects=[_project("p1")], videos_by_project=videos),
            engine=engine,
        ).run()
        script = test_session.exec(select(Script)).one()
        script.plain_text = "Edited in the script editor"
        script.component_count = 3
        test_session.add(script)
        test_session.commit()

        await SmartSuiteSyncService(
            client=make_mock_client(projects=[_project("p1")], videos_by_project=videos),
            engine=engine,
        ).run()
        test_session.expire_all()
        script = test_session.exec(select(Script)).one()

        assert script.plain_text == "Edited in the script editor"
        assert script.component_count == 3

    async def test_duplicate_records_collapse(self, engine):
        client = make_mock_client(
            projects=[_project("p1", "First"), _project("p1", "Second")]
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()
        assert outcome.value.projects_found == 2
        assert outcome.value.projects_synced == 1


class TestReuseFilter:
    async def test_reused_videos_counted_but_not_stored(self, engine, test_session):
        client = make_mock_client(
            projects=[_project("p1")],
            videos_by_project={"p1": [_video("v1"), _video("v2", production_type="reuse")]},
        )
        outcome = await SmartSuiteSyncService(client=client, engine=engine).run()

        assert outcome.value.videos_found == 2
        assert outcome.value.videos_synced == 1
        assert [v.id for v in test_session.exec(select(Video)).all()] == ["v1"]
        assert [s.video_id for s in test_session.exec(select(Script)).all()] == ["v1"]
