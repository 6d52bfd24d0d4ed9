"""Idempotent attachment of enrichment records to messages.

Media messages keep their enrichment under ``media.enrichment``; text messages
keep link context under their own ``enrichment`` list. Either way, a message
holds at most one record per enrichment kind.
"""

from collections.abc import Iterable, Mapping

from common.models.message import (
    EnrichmentKind,
    MediaEnrichment,
    MediaMessage,
    Message,
    TextMessage,
)


def kind_value(kind: EnrichmentKind | str) -> str:
    """Plain string form of an enrichment kind, usable as a dict or set key."""
    return kind.value if isinstance(kind, EnrichmentKind) else str(kind)


def get_enrichments(message: Message) -> list[MediaEnrichment]:
    """Enrichment records currently attached to ``message`` (empty if none)."""
    if isinstance(message, MediaMessage):
        return list(message.media.enrichment or [])
    if isinstance(message, TextMessage):
        return list(message.enrichment or [])
    return []


def can_hold_enrichment(message: Message) -> bool:
    return isinstance(message, MediaMessage | TextMessage)


def with_enrichments(message: Message, enrichments: list[MediaEnrichment]) -> Message:
    """Return a copy of ``message`` carrying exactly ``enrichments``.

    An empty list clears the field. Kinds that cannot hold enrichment are
    returned unchanged.
    """
    value = enrichments or None
    if isinstance(message, MediaMessage):
        media = message.media.model_copy(update={"enrichment": value})
        return message.model_copy(update={"media": media})
    if isinstance(message, TextMessage):
        return message.model_copy(update={"enrichment": value})
    return message


def should_skip_enrichment(message: Message, kind: EnrichmentKind | str) -> bool:
    """Return True if ``message`` already carries a record of ``kind``."""
    return any(e.kind == kind for e in get_enrichments(message))


def deduplicate_enrichment_by_kind(
    enrichments: Iterable[MediaEnrichment],
) -> list[MediaEnrichment]:
    """Keep one record per kind, preferring the most recent ``createdAt``.

    Kinds keep the position of their first occurrence.
    """
    by_kind: dict[str, MediaEnrichment] = {}
    for enrichment in enrichments:
        key = kind_value(enrichment.kind)
        existing = by_kind.get(key)
        if existing is None or enrichment.created_at > existing.created_at:
            by_kind[key] = enrichment
    return list(by_kind.values())


def add_enrichment_idempotent(
    message: Message, enrichment: MediaEnrichment, force_refresh: bool = False
) -> Message:
    """Attach ``enrichment`` unless a record of the same kind exists.

    With ``force_refresh`` an existing record of the kind is replaced in place.
    Messages that cannot hold enrichment are returned unchanged.
    """
    if not can_hold_enrichment(message):
        return message

    current = get_enrichments(message)
    existing_index = next(
        (i for i, e in enumerate(current) if e.kind == enrichment.kind), None
    )

    if existing_index is None:
        return with_enrichments(
            message, deduplicate_enrichment_by_kind([*current, enrichment])
        )
    if not force_refresh:
        return message

    # existing_index is the first record of the kind, so later stale copies
    # are dropped without shifting it.
    updated = [e for e in current if e.kind != enrichment.kind]
    updated.insert(existing_index, enrichment)
    return with_enrichments(message, updated)


def add_enrichments_idempotent(
    messages: Iterable[Message],
    enrichments: Mapping[str, MediaEnrichment],
    force_refresh: bool = False,
) -> list[Message]:
    """Apply ``add_enrichment_idempotent`` to each message with an entry keyed by guid."""
    result = []
    for message in messages:
        enrichment = enrichments.get(message.guid)
        if enrichment is None:
            result.append(message)
        else:
            result.append(add_enrichment_idempotent(message, enrichment, force_refresh))
    return result


def has_all_enrichments(
    message: Message, required_kinds: Iterable[EnrichmentKind | str]
) -> bool:
    kinds = {kind_value(e.kind) for e in get_enrichments(message)}
    if not kinds:
        return False
    return all(kind_value(kind) in kinds for kind in required_kinds)


def get_enrichment_by_kind(
    message: Message, kind: EnrichmentKind | str
) -> MediaEnrichment | None:
    return next((e for e in get_enrichments(message) if e.kind == kind), None)


def clear_enrichment_by_kind(message: Message, kind: EnrichmentKind | str) -> Message:
    """Remove every record of ``kind`` from ``message``."""
    current = get_enrichments(message)
    if not current:
        return message
    return with_enrichments(message, [e for e in current if e.kind != kind])
