"""
HTTP client that retries transient upstream failures.

Per attempt (attempts are numbered from 1):
  - 429            → wait Retry-After seconds if given, else 2**attempt + U(0, 0.5)s
  - other 4xx      → stop, return a non-retryable Failure with the body
  - 5xx / network  → wait 2**attempt + U(0, 1)s
  - timeout        → same as a network error; each attempt gets its own timeout
No wait follows the final attempt. The parsed JSON body of a 2xx response is
returned untouched; this layer does no domain mapping.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from scriptsync.resilience.outcomes import Failure, FailureReason, Success

logger = logging.getLogger(__name__)

RATE_LIMIT_JITTER_SECONDS = 0.5
ERROR_JITTER_SECONDS = 1.0


class RetryingHttpClient:
    """Wraps one httpx.AsyncClient; share it for the life of the process."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        """
        Args:
            client: httpx.AsyncClient to send requests with. A new one is
                    created if omitted.
            timeout: Seconds allowed for each individual attempt.
            max_retries: Total number of attempts, including the first.
            sleep: Coroutine used for backoff waits (replaced in tests).
            jitter: Random source for backoff jitter, called as jitter(0, max).
        """
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.timeout = timeout
        self.max_retries = max_retries
        self._sleep = sleep
        self._jitter = jitter

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
    ) -> Union[Success[Any], Failure]:
        """Send one logical request, retrying transient failures."""
        last_error = "Unknown error"
        reason = FailureReason.RETRIES_EXHAUSTED

        for attempt in range(1, self.max_retries + 1):
            final = attempt == self.max_retries
            logger.info("API request attempt %d/%d: %s %s", attempt, self.max_retries, method, url)

            try:
                response = await asyncio.wait_for(
                    self._client.request(method, url, headers=headers, json=json),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                last_error = f"Request timeout after {self.timeout}s"
            except httpx.HTTPError as exc:
                last_error = str(exc) or exc.__class__.__name__
            else:
                status = response.status_code

                if status == 429:
                    last_error = "HTTP 429: rate limited by upstream"
                    reason = FailureReason.RATE_LIMITED
                    if not final:
                        wait = self._retry_after(response)
                        if wait is None:
                            wait = 2 ** attempt + self._jitter(0, RATE_LIMIT_JITTER_SECONDS)
                        logger.info("Rate limited, waiting %.2fs before retry %d", wait, attempt)
                        await self._sleep(wait)
                    continue

                if 400 <= status < 500:
                    message = f"HTTP {status}: {response.text}"
                    logger.error("API error response: %s", message)
                    return Failure(error=message, reason=FailureReason.NON_RETRYABLE)

                if response.is_success:
                    try:
                        return Success(response.json())
                    except ValueError as exc:
                        last_error = f"Invalid JSON in response: {exc}"
                else:
                    last_error = f"HTTP {status}: {response.text}"

            reason = FailureReason.RETRIES_EXHAUSTED
            logger.warning("API request attempt %d failed: %s", attempt, last_error)
            if not final:
                wait = 2 ** attempt + self._jitter(0, ERROR_JITTER_SECONDS)
                logger.info("Waiting %.2fs before retry (attempt %d)", wait, attempt)
                await self._sleep(wait)

        return Failure(
            error=f"Request failed after {self.max_retries} attempts: {last_error}",
            reason=reason,
        )

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        """Retry-After in seconds, or None if absent or not an integer."""
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(int(value.strip()))
        except ValueError:
            return None
