"""
Sync error taxonomy.

Pushes that target records owned by someone else are not errors: they are
silently ignored so a caller cannot probe for foreign ids.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for sync protocol errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class MalformedRequest(SyncError):
    """Raised when a pull or push payload fails structural validation."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, code="malformed_request", status=400)
        self.errors = errors or []


class MalformedChangeSet(MalformedRequest):
    """Raised before any storage mutation when a push changeset is invalid."""


class StorageUnavailable(SyncError):
    """Raised when the change log store cannot complete an operation."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, code="storage_unavailable", status=503)


class StoreReadOnly(SyncError):
    """Raised when a write reaches a store opened read-only."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="store_read_only", status=500)


class TransportError(SyncError):
    """Raised by client transports when a request does not succeed."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, code="transport_error", status=status)
        self.retryable = retryable


class RetryExhausted(SyncError):
    """Raised when every attempt allowed by a retry policy has failed."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}",
            code="retry_exhausted",
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
