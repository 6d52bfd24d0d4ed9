"""Detect which messages are new since the last incremental run."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from common.models.message import Message
from enrichment.incremental.state import (
    IncrementalState,
    create_incremental_state,
    load_incremental_state,
)

logger = logging.getLogger(__name__)


@dataclass
class DeltaResult:
    """Outcome of comparing a collection against the previous state."""

    new_guids: list[str]
    total_messages: int
    previous_enriched_count: int
    new_count: int
    is_first_run: bool
    state: IncrementalState


@dataclass(frozen=True)
class DeltaStats:
    total: int
    new: int
    previous: int
    percent_new: float
    percent_previous: float


def extract_guids(messages: Iterable[Message]) -> set[str]:
    return {message.guid for message in messages}


def detect_new(
    current_guids: Iterable[str], previous_state: IncrementalState | None
) -> list[str]:
    """Guids present now but absent from the previous state, sorted.

    With no previous state every current guid is new.
    """
    current = set(current_guids)
    if previous_state is None:
        return sorted(current)
    return sorted(current - set(previous_state.enriched_guids))


def detect_delta(messages: list[Message], state_path: str | Path) -> DeltaResult:
    """Load the state at ``state_path`` and compute the new-message delta.

    A missing or unusable state file is a first run: every message is new and
    the returned state is an empty placeholder.
    """
    previous_state = load_incremental_state(state_path)
    new_guids = detect_new(extract_guids(messages), previous_state)

    result = DeltaResult(
        new_guids=new_guids,
        total_messages=len(messages),
        previous_enriched_count=(
            len(previous_state.enriched_guids) if previous_state is not None else 0
        ),
        new_count=len(new_guids),
        is_first_run=previous_state is None,
        state=previous_state or create_incremental_state(total_messages=len(messages)),
    )
    log_delta_summary(result)
    return result


def get_delta_stats(result: DeltaResult) -> DeltaStats:
    """Percentages of new and previously enriched messages (0 for empty input)."""
    total = result.total_messages
    previous = total - result.new_count
    if total == 0:
        return DeltaStats(total=0, new=0, previous=0, percent_new=0.0, percent_previous=0.0)
    return DeltaStats(
        total=total,
        new=result.new_count,
        previous=previous,
        percent_new=result.new_count / total * 100,
        percent_previous=previous / total * 100,
    )


def log_delta_summary(result: DeltaResult) -> None:
    if result.is_first_run:
        logger.info(f"First enrichment run: {result.total_messages} messages")
        return

    stats = get_delta_stats(result)
    logger.info(
        f"Delta detected: {result.new_count} new messages ({stats.percent_new:.1f}%) "
        f"of {result.total_messages} total messages"
    )
    logger.info(f"Previously enriched: {result.previous_enriched_count}")
