"""
Resilience primitives for calls to the SmartSuite API.

Components:
    - RateLimiter / RateLimits: fixed-window counters per (caller, action)
    - CircuitBreaker: closed/open/half-open guard around upstream calls
    - RetryingHttpClient: per-attempt timeout, Retry-After, backoff with jitter
    - Success / Failure: tagged outcomes returned by all of the above
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
)
from .http_client import RetryingHttpClient
from .outcomes import Failure, FailureReason, Outcome, Success
from .rate_limiter import (
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    RateLimits,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    # HTTP
    "RetryingHttpClient",
    # Outcomes
    "Failure",
    "FailureReason",
    "Outcome",
    "Success",
    # Rate Limiter
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimiter",
    "RateLimits",
]
