"""Error taxonomy for enrichment stages and subject validation."""
from __future__ import annotations


class EnrichmentError(Exception):
    """A source adapter failed to produce its sub-profile."""

    retryable: bool = True

    def __init__(self, message: str, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class NotFoundError(EnrichmentError):
    """Subject does not exist upstream."""
    retryable = False


class UnauthorizedError(EnrichmentError):
    """Upstream rejected our credentials."""
    retryable = False


class RateLimitedError(EnrichmentError):
    """Upstream quota is exhausted."""
    retryable = False


class TransientError(EnrichmentError):
    """Network failure, timeout or upstream 5xx."""
    retryable = True


class FetchError(TransientError):
    """A page could not be fetched."""


class SubjectValidationError(ValueError):
    """Malformed subject, rejected before a job is created."""


def is_retryable(exc: BaseException) -> bool:
    """Unknown exceptions are treated as retryable, like a flaky network."""
    return getattr(exc, "retryable", True)
