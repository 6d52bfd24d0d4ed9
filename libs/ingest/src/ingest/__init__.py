"""Ingest library: loading and reconciling message collections."""

from ingest.dedup_merge import MergeResult, MergeStats, reconcile
from ingest.loader import load_messages, write_envelope

__all__ = ["MergeResult", "MergeStats", "load_messages", "reconcile", "write_envelope"]
