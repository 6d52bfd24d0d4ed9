"""Capability interface implemented by enrichment providers."""

from enum import Enum
from typing import Protocol, runtime_checkable

from common.models.message import EnrichmentKind, MediaEnrichment, Message
from enrichment.config import EnrichmentConfig


class ProviderSlot(str, Enum):
    """Config toggle a provider is governed by."""

    VISION = "vision"
    AUDIO = "audio"
    LINKS = "links"


def slot_enabled(slot: ProviderSlot, config: EnrichmentConfig) -> bool:
    match slot:
        case ProviderSlot.VISION:
            return config.enable_vision
        case ProviderSlot.AUDIO:
            return config.enable_audio
        case ProviderSlot.LINKS:
            return config.enable_links
    return False


@runtime_checkable
class EnrichmentProvider(Protocol):
    """Produces one enrichment record for a message it supports.

    ``enrich`` may raise any exception; the caller treats it as a failure of
    that message only. ``ProviderHTTPError`` carries the status and
    ``Retry-After`` value so retryable responses can be retried.
    """

    name: str
    slot: ProviderSlot
    enrichment_kind: EnrichmentKind

    def supports(self, message: Message) -> bool: ...

    async def enrich(
        self, message: Message, config: EnrichmentConfig
    ) -> MediaEnrichment: ...
