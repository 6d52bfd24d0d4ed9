"""Merge a fresh enrichment run into a previously enriched output file."""

import logging
import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from common.models.message import ExportEnvelope, Message
from common.utils.atomic_io import read_json_or_none
from enrichment.idempotency import get_enrichments, kind_value, with_enrichments

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


@dataclass
class EnrichmentMergeStatistics:
    merged_count: int = 0
    added_count: int = 0
    preserved_count: int = 0
    retained_count: int = 0
    total_messages: int = 0

    @property
    def merged_percentage(self) -> float:
        return self.merged_count / self.total_messages * 100 if self.total_messages else 0.0

    @property
    def added_percentage(self) -> float:
        return self.added_count / self.total_messages * 100 if self.total_messages else 0.0


@dataclass
class EnrichmentMergeResult:
    messages: list[Message]
    statistics: EnrichmentMergeStatistics = field(default_factory=EnrichmentMergeStatistics)


def merge_message_enrichments(
    existing: Message, new: Message, force_refresh: bool = False
) -> Message:
    """Combine the enrichment of two versions of the same message.

    The existing message is kept. New enrichment kinds are appended after the
    existing ones; kinds already present are preserved unless
    ``force_refresh`` is set, in which case the new records replace them all.
    """
    new_enrichments = get_enrichments(new)
    if not new_enrichments:
        return existing

    if force_refresh:
        return with_enrichments(existing, new_enrichments)

    existing_enrichments = get_enrichments(existing)
    existing_kinds = {kind_value(e.kind) for e in existing_enrichments}
    additions = [e for e in new_enrichments if kind_value(e.kind) not in existing_kinds]
    if not additions:
        return existing
    return with_enrichments(existing, [*existing_enrichments, *additions])


def merge_enrichments(
    existing_messages: Iterable[Message],
    new_messages: Iterable[Message],
    force_refresh: bool = False,
) -> EnrichmentMergeResult:
    """Merge ``new_messages`` into ``existing_messages`` by guid.

    Output follows the order of ``new_messages``; messages only present in the
    existing output are appended afterwards so nothing previously enriched is
    lost. Duplicate guids in ``new_messages`` are emitted once.

    Args:
        existing_messages: Messages from the previous enriched output
        new_messages: Messages from the current run
        force_refresh: Replace existing enrichment instead of preserving it

    Returns:
        EnrichmentMergeResult with merged messages and counts
    """
    existing_by_guid: dict[str, Message] = {}
    for message in existing_messages:
        existing_by_guid.setdefault(message.guid, message)

    stats = EnrichmentMergeStatistics()
    seen: set[str] = set()
    result: list[Message] = []

    for message in new_messages:
        if message.guid in seen:
            continue
        seen.add(message.guid)

        existing = existing_by_guid.get(message.guid)
        if existing is None:
            result.append(message)
            stats.added_count += 1
            continue

        merged = merge_message_enrichments(existing, message, force_refresh)
        result.append(merged)
        stats.merged_count += 1
        if get_enrichments(merged):
            stats.preserved_count += 1

    for guid, message in existing_by_guid.items():
        if guid not in seen:
            result.append(message)
            stats.retained_count += 1

    stats.total_messages = len(result)
    logger.info(
        f"Enrichment merge: {stats.merged_count} merged ({stats.merged_percentage:.1f}%), "
        f"{stats.added_count} added ({stats.added_percentage:.1f}%), "
        f"{stats.preserved_count} with enrichment, {stats.retained_count} retained"
    )
    return EnrichmentMergeResult(messages=result, statistics=stats)


def load_existing_enriched(path: str | Path) -> ExportEnvelope | None:
    """Load a previous enriched output, or None if missing, corrupt or not an envelope."""
    raw = read_json_or_none(path)
    if not isinstance(raw, dict) or not isinstance(raw.get("messages"), list):
        return None
    try:
        return ExportEnvelope.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid enriched output {path}: {e.error_count()} error(s)")
        return None


def backup_enriched_json(path: str | Path) -> Path:
    """Copy ``path`` to ``<path>.backup`` and return the backup path.

    Raises:
        FileNotFoundError: If ``path`` does not exist
    """
    source = Path(path)
    backup = source.with_name(source.name + BACKUP_SUFFIX)
    shutil.copyfile(source, backup)
    logger.info(f"Backed up {source} to {backup}")
    return backup
