"""
Configuration settings for lessoncore.

Uses Pydantic Settings for environment variable management with .env file support.
Every value can be overridden with a LESSONCORE_-prefixed environment variable.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOME = Path.home() / ".lessoncore"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LESSONCORE_",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    state_db_path: Path = Field(
        default=DEFAULT_HOME / "state.db",
        description="SQLite file holding learner state",
    )
    telemetry_dir: Path = Field(
        default=DEFAULT_HOME / "telemetry",
        description="Directory for per-attempt JSONL telemetry",
    )
    telemetry_enabled: bool = Field(
        default=True,
        description="Write per-attempt telemetry",
    )

    # ========================================
    # Catalog
    # ========================================
    catalog_path: Path | None = Field(
        default=None,
        description="Course catalog JSON (defaults to the bundled sample catalog)",
    )

    # ========================================
    # Recommendations
    # ========================================
    default_user_id: str = Field(
        default="local",
        description="Learner id used when none is given on the command line",
    )
    recommendation_count: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Number of lessons returned by recommend",
    )

    # ========================================
    # Remote Progress Sync
    # ========================================
    sync_enabled: bool = Field(
        default=False,
        description="Push progress snapshots to the remote API",
    )
    sync_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the progress API",
    )
    sync_api_key: str = Field(
        default="",
        description="Bearer token for the progress API",
    )
    sync_endpoint: str = Field(
        default="/progress",
        description="Path the progress snapshot is posted to",
    )
    sync_debounce_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Quiet period before a progress snapshot is sent",
    )
    sync_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="HTTP timeout for progress sync",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum level written to stderr",
    )
    log_file: Path | None = Field(
        default=None,
        description="Optional log file (rotated at 10 MB)",
    )

    def has_sync_configured(self) -> bool:
        """Check if remote progress sync can run."""
        return self.sync_enabled and bool(self.sync_base_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
