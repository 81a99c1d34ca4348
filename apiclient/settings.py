"""
apiclient.settings - Centralized Configuration

Loads client configuration from .env files and environment variables using
pydantic-settings. All APICLIENT_* prefixed env vars are read automatically.

Usage:
    >>> from apiclient.settings import get_settings
    >>> settings = get_settings()
    >>> settings.max_retries
    3
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiClientSettings(BaseSettings):
    """API client configuration loaded from .env / environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="APICLIENT_",
        extra="ignore",
    )

    # -- Endpoint --------------------------------------------------------------
    # Joined to request paths by plain concatenation.
    base_url: str = ""
    user_agent: str = "apiclient/0.1.0"
    timeout_seconds: float = 30.0

    # -- Retry -----------------------------------------------------------------
    max_retries: int = Field(default=3, ge=0, le=3)
    retry_delay_seconds: float = Field(default=0.0, ge=0.0)

    # -- Notifications ---------------------------------------------------------
    banner_duration_seconds: float = 3.0


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_settings() -> ApiClientSettings:
    """Return the cached ApiClientSettings singleton."""
    return ApiClientSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for tests)."""
    get_settings.cache_clear()
