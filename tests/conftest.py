"""
Root test configuration for all tests.

Provides message factories and isolated file locations so no test touches
real exports, checkpoints or state files.
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from common.models.message import (
    MediaEnrichment,
    MediaMessage,
    NotificationMessage,
    TapbackMessage,
    TextMessage,
    parse_message,
)
from enrichment.config import EnrichmentConfig

BASE_DATE = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def _with_defaults(kind: str, guid: str, overrides: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {
        "guid": guid,
        "messageKind": kind,
        "date": "2024-01-01T12:00:00Z",
        "isFromMe": False,
        "handle": "+15551234567",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_text() -> Callable[..., TextMessage]:
    """Factory for text messages; keyword overrides use camelCase keys."""

    def _make(guid: str, text: str | None = "hello", **overrides: Any) -> TextMessage:
        message = parse_message(_with_defaults("text", guid, {"text": text, **overrides}))
        assert isinstance(message, TextMessage)
        return message

    return _make


@pytest.fixture
def make_media() -> Callable[..., MediaMessage]:
    """Factory for media messages carrying one image attachment by default."""

    def _make(
        guid: str,
        media_id: str = "att-1",
        media_kind: str = "image",
        **overrides: Any,
    ) -> MediaMessage:
        media = {
            "id": media_id,
            "filename": f"{media_id}.jpg",
            "path": f"/tmp/attachments/{media_id}.jpg",
            "mediaKind": media_kind,
        }
        media.update(overrides.pop("media", {}))
        message = parse_message(_with_defaults("media", guid, {"media": media, **overrides}))
        assert isinstance(message, MediaMessage)
        return message

    return _make


@pytest.fixture
def make_tapback() -> Callable[..., TapbackMessage]:
    def _make(guid: str, target: str = "p:0/abc", **overrides: Any) -> TapbackMessage:
        tapback = {"type": "liked", "action": "added", "targetMessageGuid": target}
        message = parse_message(
            _with_defaults("tapback", guid, {"tapback": tapback, **overrides})
        )
        assert isinstance(message, TapbackMessage)
        return message

    return _make


@pytest.fixture
def make_notification() -> Callable[..., NotificationMessage]:
    def _make(guid: str, **overrides: Any) -> NotificationMessage:
        message = parse_message(_with_defaults("notification", guid, overrides))
        assert isinstance(message, NotificationMessage)
        return message

    return _make


@pytest.fixture
def make_enrichment() -> Callable[..., MediaEnrichment]:
    """Factory for enrichment records."""

    def _make(
        kind: str = "image_analysis",
        created_at: datetime = BASE_DATE,
        provider: str = "test-provider",
        **extra: Any,
    ) -> MediaEnrichment:
        return MediaEnrichment(
            kind=kind,
            provider=provider,
            version="1.0",
            created_at=created_at,
            **extra,
        )

    return _make


@pytest.fixture
def enrichment_config(tmp_path: Path) -> EnrichmentConfig:
    """Config with no pacing delay and checkpoint/state files under tmp_path."""
    return EnrichmentConfig(
        rate_limit_delay_ms=0,
        max_retries=2,
        checkpoint_interval=2,
        checkpoint_dir=str(tmp_path / "checkpoints"),
        state_file=str(tmp_path / "state.json"),
    )


@pytest.fixture(autouse=True)
def _isolate_enrichment_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ENRICHMENT_* variables from the developer shell out of tests."""
    for key in list(os.environ):
        if key.upper().startswith("ENRICHMENT_"):
            monkeypatch.delenv(key, raising=False)
