"""
Portfolio Ingest - Configuration

Single source of truth for runtime configuration. Values come from the
process environment with a fallback to the env file named by ENV_FILE
(defaults to ``.env``).

Supports both canonical uppercase and lowercase keys.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SupabaseMode = Literal["dev", "prod"]


def normalize_mode(value: str | None) -> SupabaseMode:
    """Map the loose environment selector onto ``dev`` or ``prod``."""
    if not value:
        return "dev"
    lowered = value.strip().lower()
    if lowered in {"prod", "production"}:
        return "prod"
    if lowered in {"dev", "demo", "development"}:
        return "dev"
    logger.warning("Unknown SUPABASE_MODE=%s; defaulting to dev", value)
    return "dev"


class Settings(BaseSettings):
    """
    Ingestion settings.

    Only the Supabase credentials are needed for live runs; dry runs and the
    inventory command work with the defaults alone.
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # SUPABASE
    # =========================================================================

    SUPABASE_URL: str = Field(default="", description="Supabase project REST URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(
        default="", description="Supabase service role JWT key"
    )
    SUPABASE_MODE: SupabaseMode = Field(
        default="dev",
        description="Target environment (dev/prod); prod gates destructive steps",
    )
    STORAGE_BUCKET: str = Field(
        default="project-assets", description="Storage bucket receiving uploads"
    )
    PROJECTS_TABLE: str = Field(
        default="projects", description="Table holding one document per project"
    )

    # =========================================================================
    # INPUTS
    # =========================================================================

    ASSETS_ROOT: Path = Field(default=Path("assets"), description="Local asset tree root")
    METADATA_CSV: Path | None = Field(
        default=None,
        description="Metadata CSV; defaults to projects.csv inside ASSETS_ROOT",
    )
    SUBCATEGORY_CATEGORY: str = Field(
        default="adu-addition",
        description="Category directory that carries an extra subcategory layer",
    )
    MAX_FILE_SIZE_MB: int = Field(default=50, description="Size above which files are flagged")

    # =========================================================================
    # UPLOAD / WRITE TUNING
    # =========================================================================

    UPLOAD_BATCH_SIZE: int = Field(default=10, description="Concurrent uploads per batch")
    MAX_RETRY_ATTEMPTS: int = Field(default=3, description="Attempts per upload")
    RETRY_BASE_DELAY_SECONDS: float = Field(
        default=1.0, description="Backoff base; delay = base * 2^(attempt-1)"
    )
    WRITE_CHUNK_SIZE: int = Field(default=50, description="Documents per upsert call")
    PROD_CONFIRM_DELAY_SECONDS: float = Field(
        default=5.0, description="Pause before destructive steps against prod"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # =========================================================================
    # VALIDATION & NORMALIZATION
    # =========================================================================

    @model_validator(mode="before")
    @classmethod
    def _strip_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip whitespace and stray quotes pasted into env files."""
        if not isinstance(values, dict):
            return values
        for key, value in list(values.items()):
            if isinstance(value, str):
                values[key] = value.strip().strip('"').strip("'").strip()
        return values

    @field_validator("SUPABASE_MODE", mode="before")
    @classmethod
    def _normalize_supabase_mode(cls, value: Any) -> SupabaseMode:
        return normalize_mode(str(value) if value is not None else None)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator(
        "UPLOAD_BATCH_SIZE", "MAX_RETRY_ATTEMPTS", "WRITE_CHUNK_SIZE", "MAX_FILE_SIZE_MB"
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("RETRY_BASE_DELAY_SECONDS", "PROD_CONFIRM_DELAY_SECONDS")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def is_production(self) -> bool:
        return self.SUPABASE_MODE == "prod"

    @property
    def metadata_csv_path(self) -> Path:
        if self.METADATA_CSV is not None:
            return self.METADATA_CSV
        return self.ASSETS_ROOT / "projects.csv"

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()
