"""Sync trigger, lock status and resilience health routes."""
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from scriptsync.api.auth import require_caller
from scriptsync.api.dependencies import get_db_session, get_runtime, get_sync_service_factory
from scriptsync.config import ConfigurationError
from scriptsync.models.sync import LOCK_ROW_ID, SyncMetadata
from scriptsync.runtime import SyncRuntime

logger = logging.getLogger(__name__)

router = APIRouter()

TRIGGER_ACTION = "trigger-sync"


class SyncStatusResponse(BaseModel):
    status: str
    last_sync_started_at: Optional[datetime]
    last_sync_completed_at: Optional[datetime]
    last_error: Optional[str]
    sync_count: int


def _error(status_code: int, error: str, code: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"error": error, "code": code}, headers=headers
    )


@router.post("/trigger")
async def trigger_sync(
    caller: str = Depends(require_caller),
    runtime: SyncRuntime = Depends(get_runtime),
    service_factory=Depends(get_sync_service_factory),
):
    """
    Run one SmartSuite sync and return its result.

    Responses:
        200 {projectsFound, projectsSynced, videosFound, videosSynced, errors}
        409 {code: SYNC_IN_PROGRESS} when another run holds the lock
        429 {code: RATE_LIMITED} with Retry-After when this caller triggers too often
        500 {code: CONFIGURATION_ERROR | INTERNAL_ERROR}
    """
    decision = runtime.rate_limits.check(caller, TRIGGER_ACTION)
    if not decision.allowed:
        return _error(
            429,
            f"Too many sync requests; retry after {decision.retry_after}s",
            "RATE_LIMITED",
            headers={"Retry-After": str(decision.retry_after)},
        )

    try:
        service = service_factory()
        outcome = await service.run()
    except ConfigurationError as exc:
        logger.error("Sync not configured: %s", exc)
        return _error(500, "Server configuration error", "CONFIGURATION_ERROR")
    except Exception:
        logger.exception("Sync trigger failed")
        return _error(500, "An internal error occurred", "INTERNAL_ERROR")

    if not outcome.success:
        return _error(409, outcome.error, "SYNC_IN_PROGRESS")
    return outcome.value.to_payload()


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(session: Session = Depends(get_db_session)):
    """Return the sync lock row."""
    row = session.get(SyncMetadata, LOCK_ROW_ID)
    if not row:
        return SyncStatusResponse(
            status="not_provisioned",
            last_sync_started_at=None,
            last_sync_completed_at=None,
            last_error=None,
            sync_count=0,
        )
    return SyncStatusResponse(
        status=row.status,
        last_sync_started_at=row.last_sync_started_at,
        last_sync_completed_at=row.last_sync_completed_at,
        last_error=row.last_error,
        sync_count=row.sync_count,
    )


@router.get("/health")
def sync_health(runtime: SyncRuntime = Depends(get_runtime)):
    """Circuit breaker and rate limiter state for the SmartSuite dependency."""
    return {
        "circuit_breaker": asdict(runtime.breaker.stats()),
        "rate_limits": runtime.rate_limits.stats(),
    }
