"""
Exception types shared by the repositories, the mirror store and the API layer.

Repositories raise these; the HTTP layer is the only place that turns them
into status codes and JSON error envelopes.
"""
from typing import Optional


class SiteError(Exception):
    """Base class for all content-service errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        """
        Initialize the error.

        Args:
            message: Human readable error message (used as the JSON "error" field)
            details: Optional extra information (used as the JSON "details" field)
        """
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(SiteError):
    """Missing or malformed input. Maps to HTTP 400."""


class NotFoundError(SiteError):
    """Referenced article id or lesson date has no record. Maps to HTTP 404."""


class StorageError(SiteError):
    """The underlying key-value store failed. Maps to HTTP 500."""


class MirrorQuotaExceededError(StorageError):
    """A mirror write would push stored data past the configured size limit."""


class SchemaMismatchError(SiteError):
    """Mirror data was written under a different schema version."""

    def __init__(self, stored_version: str, expected_version: str):
        super().__init__(
            f"Stored schema version {stored_version} does not match {expected_version}"
        )
        self.stored_version = stored_version
        self.expected_version = expected_version


class ApiRequestError(StorageError):
    """The HTTP API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, details: Optional[str] = None):
        super().__init__(message, details)
        self.status_code = status_code
