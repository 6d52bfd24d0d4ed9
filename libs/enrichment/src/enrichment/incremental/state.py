"""Persisted snapshot of which messages earlier runs already enriched."""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator

from common.models.message import CamelModel
from common.utils.atomic_io import atomic_write_json, read_json_or_none
from common.utils.datetime_utils import normalize_to_utc, utc_now

logger = logging.getLogger(__name__)

STATE_VERSION = "1.0"
DEFAULT_STATE_FILE = ".imessage-state.json"
DEFAULT_OUTDATED_DAYS = 7


class EnrichmentRunStats(CamelModel):
    processed_count: int = 0
    failed_count: int = 0
    start_time: datetime
    end_time: datetime


class PipelineConfig(CamelModel):
    config_hash: str = ""


class IncrementalState(CamelModel):
    """Guids enriched by previous runs plus when the last run finished."""

    version: str = STATE_VERSION
    last_enriched_at: datetime
    total_messages: int = Field(default=0, ge=0)
    enriched_guids: list[str] = Field(default_factory=list)
    pipeline_config: PipelineConfig = Field(default_factory=PipelineConfig)
    enrichment_stats: EnrichmentRunStats | None = None

    @field_validator("last_enriched_at", mode="before")
    @classmethod
    def _utc_last_enriched_at(cls, value: Any) -> Any:
        return normalize_to_utc(value) or value


def create_incremental_state(
    *,
    total_messages: int = 0,
    enriched_guids: Iterable[str] = (),
    config_hash: str = "",
    enrichment_stats: EnrichmentRunStats | None = None,
) -> IncrementalState:
    """Build a fresh state stamped with the current time; guids are de-duplicated."""
    return IncrementalState(
        last_enriched_at=utc_now(),
        total_messages=total_messages,
        enriched_guids=list(dict.fromkeys(enriched_guids)),
        pipeline_config=PipelineConfig(config_hash=config_hash),
        enrichment_stats=enrichment_stats,
    )


def load_incremental_state(path: str | Path) -> IncrementalState | None:
    """Load a state file.

    Returns None for a missing file, unparsable content, an unknown version,
    or content that fails validation.
    """
    raw = read_json_or_none(path)
    if raw is None:
        return None
    if not isinstance(raw, dict) or raw.get("version") != STATE_VERSION:
        version = raw.get("version") if isinstance(raw, dict) else None
        logger.warning(f"Unknown state version {version!r} in {path}. Ignoring.")
        return None
    try:
        return IncrementalState.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid state file {path}: {e.error_count()} error(s)")
        return None


def save_incremental_state(state: IncrementalState, path: str | Path) -> None:
    """Atomically write ``state`` to ``path`` (temp file + rename)."""
    atomic_write_json(path, state.model_dump(mode="json", by_alias=True))
    logger.info(f"Saved incremental state ({len(state.enriched_guids)} guids) to {path}")


def update_state_with_enriched_guids(
    state: IncrementalState,
    new_guids: Iterable[str],
    enrichment_stats: EnrichmentRunStats | None = None,
    total_messages: int | None = None,
) -> IncrementalState:
    """Return a copy of ``state`` with ``new_guids`` added and the timestamp refreshed.

    Existing guid order is kept; new guids are appended once each.
    """
    merged = list(dict.fromkeys([*state.enriched_guids, *new_guids]))
    updates: dict[str, object] = {
        "enriched_guids": merged,
        "last_enriched_at": utc_now(),
    }
    if enrichment_stats is not None:
        updates["enrichment_stats"] = enrichment_stats
    if total_messages is not None:
        updates["total_messages"] = total_messages
    return state.model_copy(update=updates)


def reset_incremental_state(path: str | Path) -> bool:
    """Delete the state file so the next incremental run starts from scratch.

    Returns:
        True if a file was removed
    """
    state_path = Path(path)
    try:
        state_path.unlink()
    except FileNotFoundError:
        return False
    logger.info(f"Removed incremental state {state_path}")
    return True


def is_state_outdated(
    state: IncrementalState,
    days_threshold: int = DEFAULT_OUTDATED_DAYS,
    now: datetime | None = None,
) -> bool:
    """Return True when the last run is older than ``days_threshold`` days."""
    reference = normalize_to_utc(now) if now is not None else utc_now()
    age = reference - state.last_enriched_at
    if age > timedelta(days=days_threshold):
        logger.warning(
            f"State file is {age.days} days old (threshold {days_threshold}). "
            "Consider a full re-enrichment."
        )
        return True
    return False
