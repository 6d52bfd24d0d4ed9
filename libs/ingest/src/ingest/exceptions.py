"""Exceptions raised while loading and reconciling message collections."""

from pathlib import Path


class IngestError(Exception):
    """Base class for ingest failures."""


class InputNotFoundError(IngestError, FileNotFoundError):
    """Raised when an input export file does not exist."""

    def __init__(self, path: str | Path) -> None:
        super().__init__(f"Input file not found: {path}")
        self.path = Path(path)


class InvalidInputError(IngestError, ValueError):
    """Raised when an input file is not a valid message collection."""

    def __init__(self, path: str | Path, reason: str) -> None:
        super().__init__(f"Invalid input file {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class DuplicateGuidError(IngestError, ValueError):
    """Raised when a single collection contains the same guid twice."""

    def __init__(self, key: str, source: str = "input") -> None:
        """Initialize duplicate guid error.

        Args:
            key: Duplicate guid encountered.
            source: Label of the collection that contains it.
        """
        super().__init__(f"Duplicate guid found in {source} collection: {key!r}")
        self.key = key
        self.source = source


class ReconciliationError(IngestError):
    """Raised when a merge result fails the no-data-loss accounting check."""
