"""Checkpoint persistence for resumable enrichment runs.

A checkpoint records how far a run got (``lastProcessedIndex``), the running
totals and the failed items. Its filename embeds a hash of the configuration
that produced it, so a run with different settings never picks it up by
accident.

Beside each checkpoint sits an output journal (JSONL, one serialized message
per line) holding every output message up to ``lastProcessedIndex``. Resuming
restores that prefix so the final output of a resumed run matches an
uninterrupted one.
"""

import hashlib
import json
import logging
import os
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError

from common.models.message import CamelModel, Message, dump_message, parse_message
from common.utils.atomic_io import atomic_write_json, atomic_write_text, read_json_or_none
from common.utils.datetime_utils import utc_now
from enrichment.config import EnrichmentConfig
from enrichment.exceptions import CheckpointError

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = "1.0"
CHECKPOINT_PREFIX = "enrich-checkpoint-"
JOURNAL_SUFFIX = ".messages.jsonl"


class FailedItem(CamelModel):
    """A message whose enrichment failed after all retries."""

    index: int = Field(..., ge=0, description="Position in the input collection")
    guid: str
    kind: str = Field(..., description="Message kind of the failed message")
    error: str


class CheckpointStats(CamelModel):
    processed_count: int = 0
    failed_count: int = 0
    enrichments_by_kind: dict[str, int] = Field(default_factory=dict)


class CheckpointState(CamelModel):
    """Persisted progress of an enrichment run."""

    version: str = CHECKPOINT_VERSION
    config_hash: str
    last_processed_index: int = Field(..., ge=-1)
    total_processed: int = Field(default=0, ge=0)
    total_failed: int = Field(default=0, ge=0)
    stats: CheckpointStats = Field(default_factory=CheckpointStats)
    failed_items: list[FailedItem] = Field(default_factory=list)
    created_at: datetime


def compute_config_hash(config: EnrichmentConfig | Mapping[str, Any]) -> str:
    """SHA-256 over the canonical JSON of the output-affecting settings.

    Args:
        config: An ``EnrichmentConfig`` or an already-extracted payload mapping

    Returns:
        Hex digest
    """
    payload = config.hash_payload() if isinstance(config, EnrichmentConfig) else dict(config)
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def create_checkpoint(
    *,
    config_hash: str,
    last_processed_index: int,
    total_processed: int,
    total_failed: int,
    failed_items: Iterable[FailedItem] = (),
    enrichments_by_kind: Mapping[str, int] | None = None,
) -> CheckpointState:
    """Build a checkpoint stamped with the current time."""
    return CheckpointState(
        config_hash=config_hash,
        last_processed_index=last_processed_index,
        total_processed=total_processed,
        total_failed=total_failed,
        stats=CheckpointStats(
            processed_count=total_processed,
            failed_count=total_failed,
            enrichments_by_kind=dict(enrichments_by_kind or {}),
        ),
        failed_items=list(failed_items),
        created_at=utc_now(),
    )


def get_checkpoint_path(checkpoint_dir: str | Path, config_hash: str) -> Path:
    """Deterministic checkpoint path for a configuration hash."""
    return Path(checkpoint_dir) / f"{CHECKPOINT_PREFIX}{config_hash}.json"


def get_journal_path(checkpoint_path: str | Path) -> Path:
    """Output journal path that belongs to ``checkpoint_path``."""
    return Path(checkpoint_path).with_suffix(JOURNAL_SUFFIX)


def should_write_checkpoint(index: int, interval: int) -> bool:
    """Return True when the message at 0-based ``index`` closes an interval."""
    if interval < 1:
        raise ValueError("interval must be >= 1")  # noqa: TRY003
    return (index + 1) % interval == 0


def get_resume_index(state: CheckpointState) -> int:
    """Index of the first message a resumed run must process."""
    return state.last_processed_index + 1


def verify_config_hash(state: CheckpointState, current_hash: str) -> bool:
    return state.config_hash == current_hash


def save_checkpoint(state: CheckpointState, path: str | Path) -> None:
    """Atomically write ``state`` to ``path``.

    Raises:
        CheckpointError: If the file cannot be written
    """
    try:
        atomic_write_json(path, state.model_dump(mode="json", by_alias=True))
    except OSError as e:
        raise CheckpointError(f"Failed to write checkpoint {path}: {e}") from e
    logger.debug(
        f"Checkpoint saved at index {state.last_processed_index} "
        f"({state.total_processed} processed, {state.total_failed} failed)"
    )


def load_checkpoint(path: str | Path) -> CheckpointState | None:
    """Load a checkpoint, returning None if it is missing, unreadable or invalid."""
    raw = read_json_or_none(path)
    if raw is None:
        return None
    if not isinstance(raw, dict) or raw.get("version") != CHECKPOINT_VERSION:
        logger.warning(f"Ignoring checkpoint {path}: unsupported version")
        return None
    try:
        return CheckpointState.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid checkpoint {path}: {e.error_count()} error(s)")
        return None


class OutputJournal:
    """Append-only JSONL record of the output messages emitted so far."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def reset(self) -> None:
        """Start an empty journal, replacing any previous one."""
        try:
            atomic_write_text(self.path, "")
        except OSError as e:
            raise CheckpointError(f"Failed to reset journal {self.path}: {e}") from e

    def append(self, messages: Iterable[Message]) -> None:
        """Append messages and fsync before returning.

        Raises:
            CheckpointError: If the journal cannot be written
        """
        lines = "".join(
            json.dumps(dump_message(m), ensure_ascii=False) + "\n" for m in messages
        )
        if not lines:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(lines)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise CheckpointError(f"Failed to append to journal {self.path}: {e}") from e

    def rewrite(self, messages: Iterable[Message]) -> None:
        """Atomically replace the journal with exactly ``messages``."""
        content = "".join(
            json.dumps(dump_message(m), ensure_ascii=False) + "\n" for m in messages
        )
        try:
            atomic_write_text(self.path, content)
        except OSError as e:
            raise CheckpointError(f"Failed to rewrite journal {self.path}: {e}") from e

    def load(self, count: int) -> list[Message] | None:
        """Return the first ``count`` journaled messages.

        Returns None when the journal is missing, holds fewer than ``count``
        entries, or an entry within the first ``count`` cannot be parsed.
        """
        if count <= 0:
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                messages: list[Message] = []
                for line in f:
                    if len(messages) == count:
                        break
                    if not line.strip():
                        continue
                    messages.append(parse_message(json.loads(line)))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Unreadable journal {self.path}: {e}")
            return None

        if len(messages) < count:
            return None
        return messages
