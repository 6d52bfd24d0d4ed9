"""Tests for EnrichmentConfig validation and environment overrides."""

import pytest
from pydantic import ValidationError

from enrichment.config import EnrichmentConfig


def test_defaults():
    config = EnrichmentConfig()
    assert config.enable_vision and config.enable_audio and config.enable_links
    assert config.rate_limit_delay_ms == 1000
    assert config.max_retries == 3
    assert config.circuit_breaker_threshold == 5
    assert config.circuit_breaker_reset_ms == 60000
    assert config.checkpoint_interval == 100
    assert config.force_refresh is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ENRICHMENT_MAX_RETRIES", "5")
    monkeypatch.setenv("ENRICHMENT_ENABLE_VISION", "false")

    config = EnrichmentConfig()

    assert config.max_retries == 5
    assert config.enable_vision is False


@pytest.mark.parametrize(
    "field,value",
    [
        ("max_retries", 11),
        ("max_retries", -1),
        ("rate_limit_delay_ms", -1),
        ("circuit_breaker_threshold", 0),
        ("checkpoint_interval", 0),
        ("request_timeout_seconds", 0),
    ],
)
def test_invalid_values(field, value):
    with pytest.raises(ValidationError):
        EnrichmentConfig(**{field: value})


def test_hash_payload_ignores_cadence_and_refresh():
    base = EnrichmentConfig().hash_payload()
    assert EnrichmentConfig(checkpoint_interval=7, force_refresh=True).hash_payload() == base
    assert EnrichmentConfig(max_retries=1).hash_payload() != base
    assert set(base) == {
        "enableVisionAnalysis",
        "enableLinkAnalysis",
        "enableAudioTranscription",
        "rateLimitDelay",
        "maxRetries",
    }
