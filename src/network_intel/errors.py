from __future__ import annotations


class NetworkIntelError(Exception):
    """Base class for all errors raised by network_intel."""


class ValidationError(NetworkIntelError):
    """Bad input shape or missing required field. Not retried."""


class NotFoundError(NetworkIntelError):
    """A referenced entity or relationship does not exist."""


class ExternalProviderError(NetworkIntelError):
    """An embedding, text-generation or data provider failed after retries."""


class ConflictError(NetworkIntelError):
    """A pipeline run was requested while another one holds the sync state."""


class PartialBatchFailure(NetworkIntelError):
    """Items of a batch failed. `failed` maps item key -> error message."""

    def __init__(self, message: str, *, failed: dict[str, str], attempted: int):
        super().__init__(message)
        self.failed = failed
        self.attempted = attempted
