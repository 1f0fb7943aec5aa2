"""
Three-state circuit breaker for calls to one upstream dependency.

    CLOSED ──(failure_threshold consecutive failures)──▶ OPEN
    OPEN ──(first call at/after next_attempt_time)──▶ HALF_OPEN
    HALF_OPEN ──(half_open_max_calls successes)──▶ CLOSED
    HALF_OPEN ──(any failure)──▶ OPEN

Leaving OPEN is time-gated: nothing happens until a call arrives after the
cooldown. execute() never raises; callers branch on the returned outcome.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar, Union

from scriptsync.resilience.outcomes import Failure, FailureReason, Success

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0
    half_open_max_calls: int = 3


@dataclass(frozen=True)
class CircuitStats:
    state: str
    failure_count: int
    success_count: int
    next_attempt_time: float
    half_open_calls: int
    total_requests: int
    last_failure_time: float
    last_success_time: float


class CircuitBreaker:
    """
    Guards one upstream dependency. Share a single instance across all
    callers of that dependency so failure accounting is global.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._next_attempt_time = 0.0
        self._half_open_calls = 0
        self._total_requests = 0
        self._last_failure_time = 0.0
        self._last_success_time = 0.0

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        return cls(
            CircuitBreakerConfig(
                failure_threshold=settings.breaker_failure_threshold,
                reset_timeout_seconds=settings.breaker_reset_timeout_seconds,
                half_open_max_calls=settings.breaker_half_open_max_calls,
            ),
            clock=clock,
        )

    @property
    def state(self) -> str:
        return self._state

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
    ) -> Union[Success[T], Failure]:
        """
        Run operation unless the circuit rejects it.

        Returns:
            Success(result) if the operation completed, Failure with reason
            "circuit-open" if it was never started, or Failure with reason
            "operation-failed" if it raised.
        """
        rejection = self._admit(name)
        if rejection is not None:
            return rejection

        try:
            result = await operation()
        except Exception as exc:
            self._on_failure(name)
            message = str(exc) or exc.__class__.__name__
            logger.error(
                "Circuit breaker FAILURE for %s: %s (state=%s)", name, message, self._state
            )
            return Failure(error=message, reason=FailureReason.OPERATION_FAILED)

        self._on_success(name)
        return Success(result)

    def _admit(self, name: str):
        """Decide whether a call may run; returns a Failure if it may not."""
        with self._lock:
            now = self._clock()
            self._total_requests += 1

            if self._state == CircuitState.OPEN:
                if now < self._next_attempt_time:
                    wait = self._next_attempt_time - now
                    logger.warning(
                        "Circuit breaker OPEN for %s; next attempt in %.1fs", name, wait
                    )
                    return Failure(
                        error=(
                            "Service temporarily unavailable. "
                            f"Circuit breaker is open for another {wait:.1f}s"
                        ),
                        reason=FailureReason.CIRCUIT_OPEN,
                    )
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                self._success_count = 0
                logger.warning("Circuit breaker HALF-OPEN for %s", name)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    logger.warning("Circuit breaker HALF-OPEN trial call limit reached for %s", name)
                    return Failure(
                        error="Service is being tested for recovery. Please try again shortly.",
                        reason=FailureReason.CIRCUIT_OPEN,
                    )
                self._half_open_calls += 1

            return None

    def _on_success(self, name: str) -> None:
        with self._lock:
            self._success_count += 1
            self._last_success_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                if self._success_count >= self.config.half_open_max_calls:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
                    self._half_open_calls = 0
                    logger.warning("Circuit breaker CLOSED for %s; upstream recovered", name)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def _on_failure(self, name: str) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._open(name)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._open(name)

    def _open(self, name: str) -> None:
        # Caller holds self._lock
        self._state = CircuitState.OPEN
        self._next_attempt_time = self._clock() + self.config.reset_timeout_seconds
        self._success_count = 0
        logger.warning(
            "Circuit breaker OPENED for %s after %d failures; cooling down %.0fs",
            name, self._failure_count, self.config.reset_timeout_seconds,
        )

    def stats(self) -> CircuitStats:
        with self._lock:
            return CircuitStats(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                next_attempt_time=self._next_attempt_time,
                half_open_calls=self._half_open_calls,
                total_requests=self._total_requests,
                last_failure_time=self._last_failure_time,
                last_success_time=self._last_success_time,
            )

    def reset(self) -> None:
        """Force the breaker closed (admin operation)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._half_open_calls = 0
            self._next_attempt_time = 0.0
        logger.warning("Circuit breaker manually reset")
