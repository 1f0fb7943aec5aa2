"""
Process-wide resilience state.

One SyncRuntime is built at process startup (API lifespan, scheduler
entrypoint, or CLI) and closed at shutdown. It owns the only CircuitBreaker,
RateLimits registry and HTTP connection pool in the process; everything that
talks to SmartSuite receives them from here instead of from module globals.
"""
from dataclasses import dataclass

import httpx

from scriptsync.resilience import CircuitBreaker, RateLimits, RetryingHttpClient


@dataclass
class SyncRuntime:
    breaker: CircuitBreaker
    rate_limits: RateLimits
    http: RetryingHttpClient

    async def aclose(self) -> None:
        await self.http.aclose()


def build_runtime(settings) -> SyncRuntime:
    """Create the breaker, limiter registry and HTTP client from Settings."""
    return SyncRuntime(
        breaker=CircuitBreaker.from_settings(settings),
        rate_limits=RateLimits.from_settings(settings),
        http=RetryingHttpClient(
            client=httpx.AsyncClient(timeout=settings.request_timeout_seconds),
            timeout=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
        ),
    )
