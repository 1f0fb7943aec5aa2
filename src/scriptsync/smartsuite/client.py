"""
Domain façade over the SmartSuite REST API.

Each operation follows the same path:

    rate limit check (caller, action)  ──rejected──▶ Failure(rate-limited)
        │ allowed
    CircuitBreaker.execute  ──open──▶ Failure(circuit-open), no network call
        │ admitted
    RetryingHttpClient.request  ──▶ Success(payload) | Failure(...)

Retry and breaker policy live in scriptsync.resilience; this module only
shapes requests and types responses. The breaker, limiter and HTTP client are
injected so every caller in the process shares the same instances.
"""
import logging
from typing import Any, Dict, List, Union

from pydantic import ValidationError

from scriptsync.config import ConfigurationError
from scriptsync.resilience import (
    CircuitBreaker,
    Failure,
    FailureReason,
    Outcome,
    RateLimits,
    RetryingHttpClient,
    Success,
)
from scriptsync.smartsuite.schemas import ComponentPayload

logger = logging.getLogger(__name__)

SYNC_CALLER = "sync-job"


class UpstreamRequestError(RuntimeError):
    """Raised inside the breaker so a failed request counts as a breaker failure."""


class SmartSuiteClient:
    """
    Typed access to the projects, videos and components tables.

    Usage:
        client = SmartSuiteClient.from_settings(settings, runtime)
        outcome = await client.fetch_projects()
        if outcome.success:
            projects = outcome.value
    """

    def __init__(
        self,
        *,
        api_key: str,
        workspace_id: str,
        projects_table_id: str,
        videos_table_id: str,
        http: RetryingHttpClient,
        breaker: CircuitBreaker,
        rate_limits: RateLimits,
        components_table_id: str = "",
        base_url: str = "https://app.smartsuite.com/api/v1",
        caller: str = SYNC_CALLER,
    ):
        if not api_key or not workspace_id:
            raise ConfigurationError("SmartSuite API key and workspace id are required")
        if not projects_table_id or not videos_table_id:
            raise ConfigurationError("SmartSuite projects and videos table ids are required")
        self._api_key = api_key
        self._workspace_id = workspace_id
        self.projects_table_id = projects_table_id
        self.videos_table_id = videos_table_id
        self.components_table_id = components_table_id
        self.base_url = base_url.rstrip("/")
        self.caller = caller
        self._http = http
        self._breaker = breaker
        self._rate_limits = rate_limits

    @classmethod
    def from_settings(cls, settings, runtime, caller: str = SYNC_CALLER) -> "SmartSuiteClient":
        """Build a client from Settings and the process-wide SyncRuntime."""
        settings.require_smartsuite()
        return cls(
            api_key=settings.smartsuite_api_key,
            workspace_id=settings.smartsuite_workspace_id,
            projects_table_id=settings.smartsuite_projects_table_id,
            videos_table_id=settings.smartsuite_videos_table_id,
            components_table_id=settings.smartsuite_components_table_id,
            base_url=settings.smartsuite_base_url,
            http=runtime.http,
            breaker=runtime.breaker,
            rate_limits=runtime.rate_limits,
            caller=caller,
        )

    # ── Operations ────────────────────────────────────────────────────────────

    async def fetch_projects(self) -> Union[Success[List[Dict[str, Any]]], Failure]:
        """Fetch every project record, newest first."""
        body = {"filter": {}, "sort": [{"field": "created_date", "direction": "desc"}]}
        outcome = await self._call(
            "fetch-projects", "POST", self._list_url(self.projects_table_id), body, _items
        )
        if outcome.success:
            logger.info("Fetched %d projects", len(outcome.value))
        return outcome

    async def fetch_videos(self, project_id: str) -> Union[Success[List[Dict[str, Any]]], Failure]:
        """Fetch the video records linked to one project."""
        body = {
            "filter": {
                "operator": "and",
                "criteria": [
                    {"field": "project", "operator": "has_any_of", "value": [project_id]}
                ],
            },
            "sort": [{"field": "created_date", "direction": "desc"}],
        }
        outcome = await self._call(
            "fetch-videos", "POST", self._list_url(self.videos_table_id), body, _items
        )
        if outcome.success:
            logger.info("Fetched %d videos for project %s", len(outcome.value), project_id)
        return outcome

    async def upload_component(
        self, video_id: str, component: Union[ComponentPayload, Dict[str, Any]]
    ) -> Union[Success[str], Failure]:
        """
        Create one script component record linked to a video.

        Returns:
            Success(record_id) with the SmartSuite id of the created record.

        Raises:
            ConfigurationError: if no components table is configured.
        """
        if not self.components_table_id:
            raise ConfigurationError("SMARTSUITE_COMPONENTS_TABLE_ID is not set")
        try:
            payload = ComponentPayload.model_validate(component)
        except ValidationError as exc:
            return Failure(
                error=f"Invalid component: {exc.errors()}",
                reason=FailureReason.NON_RETRYABLE,
            )

        body = {
            "title": f"{video_id} #{payload.order}",
            "video": [video_id],
            "component_id": payload.id,
            "content": payload.content,
            "order": payload.order,
            "component_type": payload.type,
        }
        url = f"{self.base_url}/applications/{self.components_table_id}/records/"
        return await self._call(
            "upload-component", "POST", url, body,
            lambda data: str(data.get("id") or payload.id),
        )

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _call(self, action: str, method: str, url: str, body: Any, parse) -> Outcome:
        decision = self._rate_limits.check(self.caller, action)
        if not decision.allowed:
            return Failure(
                error=f"Rate limit exceeded for {action}; retry after {decision.retry_after}s",
                reason=FailureReason.RATE_LIMITED,
                retry_after=decision.retry_after,
            )

        request_failures: List[Failure] = []

        async def operation():
            response = await self._http.request(method, url, headers=self._headers(), json=body)
            if not response.success:
                request_failures.append(response)
                raise UpstreamRequestError(response.error)
            return parse(response.value)

        outcome = await self._breaker.execute(operation, action)
        if not outcome.success and request_failures:
            # Keep the HTTP layer's reason (non-retryable, retries-exhausted, ...)
            return request_failures[-1]
        return outcome

    def _list_url(self, table_id: str) -> str:
        return f"{self.base_url}/applications/{table_id}/records/list/"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "Account-ID": self._workspace_id,
        }


def _items(data: Any) -> List[Dict[str, Any]]:
    """Extract the items list from a records/list response."""
    if not isinstance(data, dict):
        raise UpstreamRequestError(f"Unexpected response shape: {type(data).__name__}")
    return list(data.get("items") or [])
