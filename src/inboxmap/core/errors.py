"""Custom exception types for the inboxmap engine.

Messages follow the same shape everywhere:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance), where there is something to do
"""

from typing import Any


class InboxMapError(Exception):
    """Base exception for all inboxmap errors."""

    pass


class ConfigValidationError(InboxMapError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(InboxMapError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class TaxonomyInvalid(InboxMapError):
    """Raised when a canonical taxonomy definition is malformed.

    Fatal at import time: the registry refuses to start with a bad definition.

    Attributes:
        problems: Every violation found, not just the first
    """

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []


class NotFound(InboxMapError):
    """Raised when a requested taxonomy item or mailbox mapping does not exist."""

    pass


class AuthRequired(InboxMapError):
    """Raised when no valid provider credential is available for a user.

    Attributes:
        provider: Provider the credential was needed for
    """

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ExternalServiceError(InboxMapError):
    """Raised when a provider API returns a non-2xx response or cannot be reached.

    Attributes:
        provider: Provider name ("gmail" or "o365")
        status_code: HTTP status code (None for network failures)
        error_code: Error code from the provider response (if available)
        body: Raw response body, truncated, for diagnostics
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code
        self.body = body


class RateLimitExceeded(ExternalServiceError):
    """Raised when the provider answers 429 and the transport gives up.

    Attributes:
        retry_after: Value of the Retry-After header, if the provider sent one
    """

    def __init__(self, message: str, provider: str | None = None, retry_after: str | None = None):
        super().__init__(message, provider=provider, status_code=429, error_code="rate_limited")
        self.retry_after = retry_after


class ValidationError(InboxMapError):
    """Raised when caller input is malformed (path, segment count, color, mapping).

    Always raised before any network call or database write.

    Attributes:
        details: One entry per offending field, e.g. {"field": "items.0.path", "message": ...}
    """

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.details = details or []


class DatabaseError(InboxMapError):
    """Raised when SQLite operations fail."""

    pass


class VersionConflictError(DatabaseError):
    """Raised when a mapping was modified between read and write.

    Attributes:
        user_id: Owner of the mapping
        provider: Provider of the mapping
        expected_version: Version the caller based its write on
        actual_version: Version currently stored (None if the row is missing)
    """

    def __init__(
        self,
        message: str,
        user_id: str,
        provider: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.provider = provider
        self.expected_version = expected_version
        self.actual_version = actual_version
