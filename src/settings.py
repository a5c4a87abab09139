"""Centralized settings for the progressive deployment controller.

Uses pydantic-settings to load from environment variables (prefixed
DEPLOY_) with defaults matching the original rollout tooling.
"""

from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Controller settings loaded from environment variables."""

    # --- Health telemetry ---
    health_endpoint: str = "http://localhost:8080/health"
    health_timeout_seconds: float = 10.0
    max_error_rate: float = 5.0  # percent
    max_response_time_ms: float = 2000.0
    min_availability: float = 99.0  # percent

    # --- Rollout ---
    stage_percentages: Annotated[list[int], NoDecode] = [10, 25, 50, 100]
    stage_wait_time: float = 300.0  # seconds
    deployment_script: str = ""
    mark_stable_on_completion: bool = False
    marker_name: str = "last_stable"

    # --- Version control ---
    release_branches: Annotated[list[str], NoDecode] = ["main", "master"]
    git_remote: str = "origin"
    git_workdir: str = "."

    # --- Database ---
    use_database: bool = False
    database_url: str = "sqlite:///deployments.db"

    # --- Incidents ---
    github_repo: str = ""
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    notification_webhook_url: str = ""

    # --- Port retries ---
    port_max_retries: int = 3
    port_retry_base_delay: float = 1.0

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "console"

    model_config = {
        "env_prefix": "DEPLOY_",
        "env_file": ".env",
        "extra": "ignore",
    }

    @field_validator("stage_percentages", mode="before")
    @classmethod
    def _split_stages(cls, value):
        if isinstance(value, str):
            value = value.strip().strip("[]")
            return [int(part) for part in value.split(",") if part.strip()]
        return value

    @field_validator("release_branches", mode="before")
    @classmethod
    def _split_branches(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
