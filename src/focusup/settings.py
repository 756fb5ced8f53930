"""
FocusUp Settings.

Configuration is read from environment variables with the FOCUSUP_
prefix (or a local .env file):

    FOCUSUP_REMOTE_URL           Base URL of the hosted relational backend
    FOCUSUP_REMOTE_API_KEY       Public API key sent with every request
    FOCUSUP_REMOTE_ACCESS_TOKEN  Bearer token of the signed-in user
    FOCUSUP_REMOTE_TIMEOUT       Seconds before a remote call counts as failed
    FOCUSUP_CACHE_PATH           SQLite file backing the persistent cache
    FOCUSUP_REFRESH_DELAY        Seconds before the post-mutation refresh
    FOCUSUP_NATURAL_KEY_WINDOW   Seconds of created-time proximity for
                                 placeholder matching
    FOCUSUP_LOG_LEVEL            Logging level name
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FOCUSUP_",
        env_file=".env",
        extra="ignore",
    )

    remote_url: Optional[str] = Field(default=None, description="Remote store base URL")
    remote_api_key: Optional[str] = Field(default=None, description="Remote store API key")
    remote_access_token: Optional[str] = Field(default=None, description="User bearer token")
    remote_timeout: float = Field(default=10.0, gt=0)

    cache_path: Path = Field(default=Path.home() / ".focusup" / "cache.db")

    refresh_delay: Optional[float] = Field(default=1.5, ge=0)
    natural_key_window: float = Field(default=5.0, ge=0)

    log_level: str = Field(default="INFO")

    @field_validator("remote_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url and self.remote_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
