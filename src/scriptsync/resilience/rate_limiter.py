"""
Fixed-window request counters keyed by (caller, action).

Windows are aligned to wall-clock boundaries: floor(now / window) * window.
The first request in a new window resets the counter to 1. Idle entries are
swept lazily from inside check_limit(), at most once per cleanup interval, so
there is no background timer.

A rejection is advisory: the limiter only reports it, the caller decides
whether to fail, queue or surface it.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    window_seconds: float
    max_requests: int
    cleanup_interval_seconds: float = 300.0


@dataclass
class RateLimitEntry:
    count: int
    window_start: float
    last_access: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    current_count: int
    reset_time: float  # epoch seconds at which the current window ends
    retry_after: Optional[int] = None  # whole seconds, only set when rejected


class RateLimiter:
    """One fixed-window counter table with a single budget."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def check_limit(self, key: str) -> RateLimitDecision:
        """Count one request for key and report whether it fits the budget."""
        with self._lock:
            now = self._clock()
            self._cleanup(now)

            window = self.config.window_seconds
            window_start = math.floor(now / window) * window
            reset_time = window_start + window
            entry = self._entries.get(key)

            if entry is None or entry.window_start != window_start:
                self._entries[key] = RateLimitEntry(
                    count=1, window_start=window_start, last_access=now
                )
                return RateLimitDecision(allowed=True, current_count=1, reset_time=reset_time)

            entry.count += 1
            entry.last_access = now

            if entry.count > self.config.max_requests:
                retry_after = math.ceil(reset_time - now)
                logger.warning(
                    "Rate limit exceeded for %s: %d/%d",
                    key, entry.count, self.config.max_requests,
                )
                return RateLimitDecision(
                    allowed=False,
                    current_count=entry.count,
                    reset_time=reset_time,
                    retry_after=retry_after,
                )

            return RateLimitDecision(
                allowed=True, current_count=entry.count, reset_time=reset_time
            )

    def _cleanup(self, now: float) -> None:
        # Caller holds self._lock
        if now - self._last_cleanup < self.config.cleanup_interval_seconds:
            return
        cutoff = now - self.config.window_seconds * 2
        stale = [k for k, e in self._entries.items() if e.last_access < cutoff]
        for k in stale:
            del self._entries[k]
        self._last_cleanup = now
        logger.debug("Rate limiter cleanup: %d entries remaining", len(self._entries))

    def stats(self) -> Dict[str, float]:
        with self._lock:
            return {"total_keys": len(self._entries), "last_cleanup": self._last_cleanup}


class RateLimits:
    """
    One RateLimiter per action category, each with its own budget.

    Usage:
        limits = RateLimits(window_seconds=60, budgets={"fetch-videos": 20})
        decision = limits.check("sync-job", "fetch-videos")
    """

    def __init__(
        self,
        window_seconds: float,
        budgets: Dict[str, int],
        default_max_requests: int = 30,
        cleanup_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._window_seconds = window_seconds
        self._budgets = dict(budgets)
        self._default_max_requests = default_max_requests
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._limiters: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.time) -> "RateLimits":
        return cls(
            window_seconds=settings.rate_limit_window_seconds,
            budgets=settings.rate_limit_budgets(),
            default_max_requests=settings.rate_limit_default,
            cleanup_interval_seconds=settings.rate_limit_cleanup_interval_seconds,
            clock=clock,
        )

    def limiter_for(self, action: str) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(action)
            if limiter is None:
                limiter = RateLimiter(
                    RateLimitConfig(
                        window_seconds=self._window_seconds,
                        max_requests=self._budgets.get(action, self._default_max_requests),
                        cleanup_interval_seconds=self._cleanup_interval_seconds,
                    ),
                    clock=self._clock,
                )
                self._limiters[action] = limiter
            return limiter

    def check(self, caller: str, action: str) -> RateLimitDecision:
        return self.limiter_for(action).check_limit(f"{caller}:{action}")

    def stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            limiters = dict(self._limiters)
        return {action: limiter.stats() for action, limiter in limiters.items()}
