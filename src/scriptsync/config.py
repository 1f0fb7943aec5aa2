from typing import Dict, Optional

from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised when required credentials or endpoints are missing."""


class Settings(BaseSettings):
    smartsuite_api_key: str = ""
    smartsuite_workspace_id: str = ""
    smartsuite_base_url: str = "https://app.smartsuite.com/api/v1"
    smartsuite_projects_table_id: str = "68a8ff5237fde0bf797c05b3"
    smartsuite_videos_table_id: str = "68b2437a8f1755b055e0a124"
    smartsuite_components_table_id: str = ""
    database_url: str = "sqlite:///./scriptsync.db"
    sync_api_token: str = ""  # bearer token accepted by POST /sync/trigger

    request_timeout_seconds: float = 10.0
    max_retries: int = 3

    breaker_failure_threshold: int = 5
    breaker_reset_timeout_seconds: float = 30.0
    breaker_half_open_max_calls: int = 3

    rate_limit_window_seconds: float = 60.0
    rate_limit_cleanup_interval_seconds: float = 300.0
    rate_limit_fetch_projects: int = 10
    rate_limit_fetch_videos: int = 120
    rate_limit_upload_component: int = 50
    rate_limit_trigger_sync: int = 5
    rate_limit_default: int = 30

    video_fetch_concurrency: int = 4
    sync_hour: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def rate_limit_budgets(self) -> Dict[str, int]:
        """Max requests per window, keyed by action category."""
        return {
            "fetch-projects": self.rate_limit_fetch_projects,
            "fetch-videos": self.rate_limit_fetch_videos,
            "upload-component": self.rate_limit_upload_component,
            "trigger-sync": self.rate_limit_trigger_sync,
        }

    def require_smartsuite(self) -> None:
        """Raise ConfigurationError unless the upstream credentials are set."""
        missing = [
            name
            for name in (
                "smartsuite_api_key",
                "smartsuite_workspace_id",
                "smartsuite_base_url",
                "smartsuite_projects_table_id",
                "smartsuite_videos_table_id",
            )
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                "Missing required settings: " + ", ".join(m.upper() for m in missing)
            )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
