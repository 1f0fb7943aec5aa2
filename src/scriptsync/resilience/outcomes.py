"""
Tagged success/failure values passed between the resilience layers.

Expected failure paths (rate limited, circuit open, non-retryable response,
lock contention) travel as Failure values instead of exceptions, so every
caller has to branch on `.success`.
"""
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class FailureReason:
    OPERATION_FAILED = "operation-failed"
    CIRCUIT_OPEN = "circuit-open"
    RATE_LIMITED = "rate-limited"
    NON_RETRYABLE = "non-retryable"
    RETRIES_EXHAUSTED = "retries-exhausted"
    SYNC_IN_PROGRESS = "sync-in-progress"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    success = True


@dataclass(frozen=True)
class Failure:
    error: str
    reason: str = FailureReason.OPERATION_FAILED
    retry_after: Optional[int] = None  # seconds, when the reason is rate-limited

    success = False


Outcome = Union[Success[Any], Failure]
