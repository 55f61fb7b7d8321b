"""Exception types shared across the Quarry pipeline."""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for errors raised by Quarry."""


class SourceNotFoundError(QuarryError, LookupError):
    """Raised when a source id does not exist for the requesting tenant."""

    def __init__(self, tenant_id: str, source_id: str) -> None:
        super().__init__(f"Source '{source_id}' not found for tenant '{tenant_id}'.")
        self.tenant_id = tenant_id
        self.source_id = source_id


class EmbeddingProviderError(QuarryError):
    """The embedding provider rejected or failed a request.

    ``fatal`` marks errors that will not go away by retrying the next batch
    (bad credentials, exhausted quota, rate limiting).
    """

    def __init__(self, message: str, *, fatal: bool = False, status: int | None = None) -> None:
        super().__init__(message)
        self.fatal = fatal
        self.status = status


class FetchError(QuarryError):
    """An HTTP fetch failed. ``status`` is set for non-2xx responses."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SsrfError(FetchError, ValueError):
    """Raised when a URL resolves to a private or reserved address."""


class RerankerError(QuarryError):
    """The reranker service could not be reached or returned an unusable reply."""
