"""Reconciliation of CSV-derived and DB-derived message collections.

Merges two independently ingested collections into one without losing or
duplicating messages:

1. Exact match: identical ``guid`` in the authoritative (DB) collection.
2. Content equivalence: same kind, same sender, and equal normalized text
   (text messages) or equal media id (media messages).
3. Unmatched messages from both sides pass through.

Matched pairs keep the primary (CSV) record with the authoritative fields
(timestamps, sender, read state, reply target, guid) taken from the DB side.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field

from common.models.message import CamelModel, MediaMessage, Message, MessageKind
from ingest.exceptions import DuplicateGuidError, ReconciliationError

logger = logging.getLogger(__name__)

__all__ = [
    "AUTHORITATIVE_FIELDS",
    "ContentMatch",
    "MergeResult",
    "MergeStats",
    "apply_authoritative_fields",
    "detect_content_equivalence",
    "ensure_unique_guids",
    "find_exact_match",
    "normalize_text",
    "reconcile",
    "verify_no_data_loss",
]

# Fields where the authoritative side wins whenever it carries a value.
AUTHORITATIVE_FIELDS = (
    "date_read",
    "date_delivered",
    "date_edited",
    "handle",
    "is_read",
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


class MergeStats(CamelModel):
    """Accounting of a single reconcile pass."""

    csv_count: int = Field(default=0, description="Messages in the primary collection")
    db_count: int = Field(default=0, description="Messages in the authoritative collection")
    output_count: int = Field(default=0, description="Messages in the merged output")
    exact_matches: int = Field(default=0, description="Pairs matched on guid")
    content_matches: int = Field(default=0, description="Pairs matched on content")
    no_matches: int = Field(default=0, description="Primary messages with no counterpart")

    @property
    def matched_db_count(self) -> int:
        return self.exact_matches + self.content_matches


@dataclass(frozen=True)
class ContentMatch:
    """Candidate pairing of a primary message with an authoritative one."""

    primary_guid: str
    authoritative_guid: str
    confidence: float
    reasons: tuple[str, ...] = ()


@dataclass
class MergeResult:
    """Merged messages plus the stats describing how they were produced."""

    messages: list[Message]
    stats: MergeStats
    content_match_pairs: list[ContentMatch] = field(default_factory=list)


def normalize_text(text: str | None) -> str:
    """Normalize message text for content comparison.

    Lower-cases, strips punctuation, trims and collapses internal whitespace.

    Args:
        text: Input text, possibly None

    Returns:
        Normalized text ("" for None or empty input)
    """
    if not text:
        return ""
    lowered = text.lower().strip()
    without_punctuation = _PUNCTUATION_RE.sub("", lowered)
    return _WHITESPACE_RE.sub(" ", without_punctuation).strip()


def ensure_unique_guids(messages: Iterable[Message], source: str) -> None:
    """Raise ``DuplicateGuidError`` if ``messages`` repeats a guid."""
    seen: set[str] = set()
    for message in messages:
        if message.guid in seen:
            raise DuplicateGuidError(message.guid, source)
        seen.add(message.guid)


def find_exact_match(
    message: Message, authoritative_by_guid: dict[str, Message]
) -> Message | None:
    """Return the authoritative message sharing ``message.guid``, if any."""
    return authoritative_by_guid.get(message.guid)


def detect_content_equivalence(
    primary: Message, candidate: Message
) -> ContentMatch | None:
    """Decide whether two messages with different guids are the same message.

    Matching is binary: either every rule holds (confidence 1.0) or there is
    no match. Tapbacks and notifications never content-match.

    Args:
        primary: Message from the primary collection
        candidate: Unconsumed message from the authoritative collection

    Returns:
        ContentMatch with the reasons that held, or None
    """
    if primary.message_kind != candidate.message_kind:
        return None
    if primary.handle != candidate.handle:
        return None

    reasons = ["same_kind", "same_handle"]

    if primary.message_kind == MessageKind.TEXT:
        primary_text = normalize_text(primary.text)
        if primary_text != normalize_text(candidate.text):
            return None
        reasons.append("same_normalized_text")
    elif primary.message_kind == MessageKind.MEDIA:
        if not isinstance(primary, MediaMessage) or not isinstance(
            candidate, MediaMessage
        ):
            return None
        if not primary.media.id or primary.media.id != candidate.media.id:
            return None
        reasons.append("same_media_id")
    else:
        return None

    return ContentMatch(
        primary_guid=primary.guid,
        authoritative_guid=candidate.guid,
        confidence=1.0,
        reasons=tuple(reasons),
    )


def apply_authoritative_fields(primary: Message, authoritative: Message) -> Message:
    """Combine a matched pair into one message.

    The authoritative side always supplies ``guid`` and ``date``, and supplies
    the other authoritative fields and ``replyingTo.targetMessageGuid`` when it
    has a value. Any remaining field missing on the primary side is filled from
    the authoritative side, limited to fields the primary's kind carries.

    Args:
        primary: Matched primary (CSV) message
        authoritative: Matched authoritative (DB) message

    Returns:
        A new message of the primary's kind
    """
    merged: dict[str, Any] = primary.model_dump()
    authoritative_data: dict[str, Any] = authoritative.model_dump()

    merged["guid"] = authoritative.guid
    merged["date"] = authoritative.date

    for name in AUTHORITATIVE_FIELDS:
        value = authoritative_data.get(name)
        if value is not None:
            merged[name] = value

    target_guid = (
        authoritative.replying_to.target_message_guid
        if authoritative.replying_to is not None
        else None
    )
    if target_guid is not None:
        reply = dict(merged.get("replying_to") or {})
        reply["target_message_guid"] = target_guid
        merged["replying_to"] = reply

    primary_fields = type(primary).model_fields
    for name, value in authoritative_data.items():
        if name not in primary_fields or value is None:
            continue
        if merged.get(name) is None:
            merged[name] = value

    return type(primary).model_validate(merged)


def verify_no_data_loss(stats: MergeStats) -> bool:
    """Check the merge accounting invariant.

    ``output == exact + content + unmatched primary + unconsumed authoritative``
    """
    expected = (
        stats.exact_matches
        + stats.content_matches
        + stats.no_matches
        + (stats.db_count - stats.matched_db_count)
    )
    return stats.output_count == expected and stats.csv_count == (
        stats.exact_matches + stats.content_matches + stats.no_matches
    )


def reconcile(
    primary: Iterable[Message], authoritative: Iterable[Message]
) -> MergeResult:
    """Merge a primary (CSV) collection with an authoritative (DB) collection.

    Both inputs are processed in guid order. Exact guid matches are reserved
    before any content matching, so a guid match always takes precedence over
    a content match on the same authoritative message.

    Args:
        primary: Messages whose content fields are preferred
        authoritative: Messages whose timestamps and identity are preferred

    Returns:
        MergeResult with primary-order output followed by unconsumed
        authoritative messages. Feeding that output back through
        ``reconcile(output, [])`` yields the same messages keyed by guid,
        re-sorted by guid, since the merged output is not itself guid-sorted.

    Raises:
        DuplicateGuidError: If either input repeats a guid
        ReconciliationError: If the result fails the accounting check
    """
    sorted_primary = sorted(primary, key=lambda m: m.guid)
    sorted_authoritative = sorted(authoritative, key=lambda m: m.guid)

    ensure_unique_guids(sorted_primary, "primary")
    ensure_unique_guids(sorted_authoritative, "authoritative")

    authoritative_by_guid = {m.guid: m for m in sorted_authoritative}
    consumed: set[str] = {
        m.guid for m in sorted_primary if find_exact_match(m, authoritative_by_guid)
    }

    output: list[Message] = []
    pairs: list[ContentMatch] = []
    exact_matches = content_matches = no_matches = 0

    for message in sorted_primary:
        exact = find_exact_match(message, authoritative_by_guid)
        if exact is not None:
            output.append(apply_authoritative_fields(message, exact))
            exact_matches += 1
            continue

        matched = False
        for candidate in sorted_authoritative:
            if candidate.guid in consumed:
                continue
            match = detect_content_equivalence(message, candidate)
            if match is None:
                continue
            output.append(apply_authoritative_fields(message, candidate))
            consumed.add(candidate.guid)
            pairs.append(match)
            content_matches += 1
            matched = True
            break

        if not matched:
            output.append(message)
            no_matches += 1

    output.extend(m for m in sorted_authoritative if m.guid not in consumed)

    stats = MergeStats(
        csv_count=len(sorted_primary),
        db_count=len(sorted_authoritative),
        output_count=len(output),
        exact_matches=exact_matches,
        content_matches=content_matches,
        no_matches=no_matches,
    )
    if not verify_no_data_loss(stats):
        raise ReconciliationError(f"Merge accounting mismatch: {stats.model_dump()}")

    logger.info(
        f"Merged {stats.csv_count} primary + {stats.db_count} authoritative -> "
        f"{stats.output_count} messages (exact: {exact_matches}, "
        f"content: {content_matches}, unmatched: {no_matches})"
    )
    return MergeResult(messages=output, stats=stats, content_match_pairs=pairs)
