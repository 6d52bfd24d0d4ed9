"""Incremental enrichment: persisted state and new-message detection."""

from .delta import DeltaResult, detect_delta, detect_new, extract_guids, get_delta_stats
from .state import (
    IncrementalState,
    create_incremental_state,
    is_state_outdated,
    load_incremental_state,
    reset_incremental_state,
    save_incremental_state,
    update_state_with_enriched_guids,
)

__all__ = [
    "DeltaResult",
    "IncrementalState",
    "create_incremental_state",
    "detect_delta",
    "detect_new",
    "extract_guids",
    "get_delta_stats",
    "is_state_outdated",
    "load_incremental_state",
    "reset_incremental_state",
    "save_incremental_state",
    "update_state_with_enriched_guids",
]
