"""Enrichment providers."""

from .base import EnrichmentProvider, ProviderSlot, slot_enabled
from .link_context import LinkContextProvider

__all__ = ["EnrichmentProvider", "LinkContextProvider", "ProviderSlot", "slot_enabled"]
