from __future__ import annotations

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings.

    Values may be provided via environment variables (``WORKER_`` prefix).
    """

    model_config = SettingsConfigDict(env_prefix="WORKER_", case_sensitive=False)

    # HTTP
    cors_allow_origins: str = Field("*", description="Comma-separated origins")

    # Aggregation job backend
    aggregate_base_url: str = Field("", description="Base URL of the engagement summary functions")
    aggregate_token: Optional[str] = Field(None, description="Bearer token for the backend")
    aggregate_start_path: str = "/engagement-summary"
    aggregate_status_path: str = "/engagement-status"
    poll_interval_s: float = Field(2.0, gt=0)
    poll_max_attempts: int = Field(30, ge=1)
    http_timeout_s: float = 30.0
    ssl_no_verify: bool = False

    # Meeting sources for /v1/meetings/refresh
    meeting_sources: str = Field("", description="Comma-separated tag=url pairs")
    window_tz: str = "America/Chicago"
    window_days: int = Field(180, ge=1)

    # Paths
    db_path: str = Field("", description="SQLite snapshot store; empty means next to the package")

    def source_urls(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for item in self.meeting_sources.split(","):
            tag, sep, url = item.strip().partition("=")
            if sep and tag.strip() and url.strip():
                out[tag.strip()] = url.strip()
        return out


def load_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
