"""Enrichment library for message timelines.

This library contains the resumable enrichment pass:
- Provider interface and the link-context provider
- Rate limiting, retry strategy and circuit breaking
- Checkpoints, output journal and incremental state
"""

__all__ = ["providers", "incremental"]
