"""FastAPI dependencies that hand out the objects built in the app lifespan."""
from typing import Callable, Generator

from fastapi import Request
from sqlmodel import Session

from scriptsync.runtime import SyncRuntime
from scriptsync.smartsuite.sync_service import SmartSuiteSyncService


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """Yields a DB session bound to the app's engine."""
    with Session(request.app.state.engine) as session:
        yield session


def get_sync_service_factory(request: Request) -> Callable[[], SmartSuiteSyncService]:
    """
    Returns a zero-arg callable that builds a fresh SmartSuiteSyncService.

    Building is deferred to the route so configuration errors surface as a
    structured 500 instead of a dependency failure.
    """
    return request.app.state.sync_service_factory
