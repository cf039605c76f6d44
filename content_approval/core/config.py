"""
Application Configuration

Settings for the content approval engine, loaded from environment variables
(and a project-root .env file when present).
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=ENV_PATH,
        extra="ignore",
        populate_by_name=True,
    )

    # Runtime environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    use_json_logging: bool = Field(default=False, alias="USE_JSON_LOGGING")

    # Record store
    database_url: str = Field(default="sqlite:///./content_approval.db", alias="DATABASE_URL")
    db_echo: bool = Field(default=False, alias="DB_ECHO")

    # Edit locking
    edit_lock_timeout_minutes: int = Field(default=30, ge=1, alias="EDIT_LOCK_TIMEOUT_MINUTES")

    # Approval sessions
    approval_session_ttl_days: int = Field(default=30, ge=1, alias="APPROVAL_SESSION_TTL_DAYS")
    approval_session_max_ttl_days: int = Field(default=365, ge=1, alias="APPROVAL_SESSION_MAX_TTL_DAYS")
    share_token_bytes: int = Field(default=32, ge=16, alias="SHARE_TOKEN_BYTES")
    share_base_url: str = Field(default="http://localhost:3000", alias="SHARE_BASE_URL")

    # Batch submissions
    batch_max_concurrency: int = Field(default=8, ge=1, alias="BATCH_MAX_CONCURRENCY")

    # HTTP
    cors_origins: Optional[str] = Field(default=None, alias="CORS_ORIGINS")

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("share_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def get_cors_origins(self) -> List[str]:
        """Return configured CORS origins, or an empty list when unset."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Return a singleton instance of the application settings.

    Tests that change the environment call ``get_settings.cache_clear()``.
    """
    return Settings()
