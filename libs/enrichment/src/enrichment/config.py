"""
Configuration for the enrichment pass.
Provider toggles, rate limiting, retry and checkpoint settings.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EnrichmentConfig(BaseSettings):
    """
    Enrichment run configuration with validation.
    Values can be overridden with ENRICHMENT_* environment variables.
    """

    model_config = SettingsConfigDict(env_prefix="ENRICHMENT_", case_sensitive=False)

    # Provider Toggles
    enable_vision: bool = Field(
        default=True, description="Enable image analysis for media messages"
    )
    enable_audio: bool = Field(
        default=True, description="Enable audio transcription for media messages"
    )
    enable_links: bool = Field(
        default=True, description="Enable link-context extraction for text messages"
    )

    # Rate Limiting & Retry
    rate_limit_delay_ms: int = Field(
        default=1000, description="Minimum delay between provider calls in milliseconds"
    )
    max_retries: int = Field(
        default=3, description="Retry attempts for retryable provider failures"
    )
    circuit_breaker_threshold: int = Field(
        default=5, description="Consecutive failures that open the circuit breaker"
    )
    circuit_breaker_reset_ms: int = Field(
        default=60000, description="Circuit breaker cool-down in milliseconds"
    )
    request_timeout_seconds: float = Field(
        default=30.0, description="Timeout for a single provider HTTP request"
    )

    # Checkpointing
    checkpoint_interval: int = Field(
        default=100, description="Write a checkpoint every N processed messages"
    )
    checkpoint_dir: str = Field(
        default="./.checkpoints", description="Directory holding checkpoint files"
    )
    state_file: str = Field(
        default=".imessage-state.json",
        description="Incremental state file for --incremental runs",
    )

    # Feature Flags
    force_refresh: bool = Field(
        default=False,
        description="Re-enrich messages that already carry an enrichment of the same kind",
    )
    verbose_logging: bool = Field(default=False, description="Enable verbose logging")

    @field_validator("rate_limit_delay_ms", "circuit_breaker_reset_ms")
    def validate_non_negative_ms(cls, v):
        if v < 0:
            raise ValueError("Delays must be non-negative")
        return v

    @field_validator("max_retries")
    def validate_max_retries(cls, v):
        """
        Validate that the retry count is between 0 and 10.

        Raises:
            ValueError: If `v` is outside 0..10.
        """
        if v < 0 or v > 10:
            raise ValueError("max_retries must be between 0 and 10")
        return v

    @field_validator("circuit_breaker_threshold")
    def validate_threshold(cls, v):
        if v < 1:
            raise ValueError("Circuit breaker threshold must be at least 1")
        return v

    @field_validator("checkpoint_interval")
    def validate_checkpoint_interval(cls, v):
        if v < 1:
            raise ValueError("Checkpoint interval must be at least 1")
        return v

    @field_validator("request_timeout_seconds")
    def validate_timeout(cls, v):
        if v <= 0 or v > 300:
            raise ValueError("Request timeout must be between 0 and 300 seconds")
        return v

    def hash_payload(self) -> dict[str, Any]:
        """Settings that change enrichment output, as hashed into the checkpoint name.

        Checkpoint cadence and force-refresh do not change what a completed
        message looks like, so they are left out.
        """
        return {
            "enableVisionAnalysis": self.enable_vision,
            "enableLinkAnalysis": self.enable_links,
            "enableAudioTranscription": self.enable_audio,
            "rateLimitDelay": self.rate_limit_delay_ms,
            "maxRetries": self.max_retries,
        }

    def log_configuration(self) -> None:
        """Log current configuration for debugging (context-rich errors)."""
        logger.info("Enrichment Configuration:")
        logger.info(f"  Vision: {'Enabled' if self.enable_vision else 'Disabled'}")
        logger.info(f"  Audio: {'Enabled' if self.enable_audio else 'Disabled'}")
        logger.info(f"  Links: {'Enabled' if self.enable_links else 'Disabled'}")
        logger.info(f"  Rate Limit Delay: {self.rate_limit_delay_ms}ms")
        logger.info(f"  Max Retries: {self.max_retries}")
        logger.info(
            f"  Circuit Breaker: {self.circuit_breaker_threshold} failures, "
            f"{self.circuit_breaker_reset_ms}ms cool-down"
        )
        logger.info(f"  Checkpoint Interval: {self.checkpoint_interval}")
        logger.info(f"  Checkpoint Dir: {self.checkpoint_dir}")
        logger.info(
            f"  Force Refresh: {'Enabled' if self.force_refresh else 'Disabled'}"
        )
