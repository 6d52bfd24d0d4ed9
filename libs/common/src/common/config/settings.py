"""Shared application settings for the timeline pipeline."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.models.message import EXPORT_SCHEMA_VERSION


class Settings(BaseSettings):
    """Process-wide settings shared by the merge and enrichment scripts."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ============================================================================
    # EXPORT FORMAT
    # ============================================================================

    export_schema_version: str = Field(
        default=EXPORT_SCHEMA_VERSION,
        description="Schema version written into export envelopes",
    )

    # ============================================================================
    # LOGGING CONFIGURATION
    # ============================================================================

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
