"""Exceptions raised by the enrichment pass and its providers."""


class EnrichmentError(Exception):
    """Base class for enrichment failures."""


class ConfigHashMismatchError(EnrichmentError):
    """Raised when resuming from a checkpoint written under a different configuration."""

    def __init__(self, expected: str, found: str, path: str | None = None) -> None:
        location = f" ({path})" if path else ""
        super().__init__(
            f"Checkpoint config hash mismatch{location}: expected {expected}, found {found}. "
            "Run without --resume or restore the original configuration."
        )
        self.expected = expected
        self.found = found
        self.path = path


class CheckpointError(EnrichmentError):
    """Raised when a checkpoint or its output journal cannot be written or restored."""


class ProviderError(EnrichmentError):
    """Raised by an enrichment provider when it cannot produce a record."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderHTTPError(ProviderError):
    """Raised by an HTTP provider for a non-success response."""

    def __init__(
        self,
        provider: str,
        status: int,
        retry_after: str | None = None,
        url: str | None = None,
    ) -> None:
        target = f" for {url}" if url else ""
        super().__init__(provider, f"HTTP {status}{target}")
        self.status = status
        self.retry_after = retry_after
        self.url = url
