"""Tests for shared settings."""

import pytest
from pydantic import ValidationError

from common.config.settings import Settings, get_settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.log_level == "INFO"
    assert "%(levelname)s" in settings.log_format


def test_log_level_is_upper_cased(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert Settings(_env_file=None).log_level == "DEBUG"


def test_invalid_log_level_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="LOUD")


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_export_schema_version_from_env(monkeypatch):
    monkeypatch.setenv("EXPORT_SCHEMA_VERSION", "2.1.0")
    assert Settings(_env_file=None).export_schema_version == "2.1.0"
