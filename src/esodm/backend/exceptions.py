"""Backend and request exceptions.

The transport converts client errors into this hierarchy once; everything
above it branches on these classes only.
"""

from __future__ import annotations

from typing import Any


class OdmError(Exception):
    """Base exception for esodm errors."""


class InvalidRequestError(OdmError, ValueError):
    """Raised when a request is rejected locally, before any backend call."""


class DocumentValidationError(InvalidRequestError):
    """Raised when a document does not match its repository schema."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class BackendConnectionError(OdmError):
    """Raised when the backend cannot be reached at all."""


class BackendError(OdmError):
    """Raised when the backend answers with an error status."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitedError(BackendError):
    """Raised on HTTP 429 - the backend asks the client to slow down."""


class PayloadTooLargeError(BackendError):
    """Raised on HTTP 413 or when a bulk payload exceeds the configured byte ceiling."""


class VersionConflictError(BackendError):
    """Raised on HTTP 409 - a conditional write hit a newer document version."""


class VersionMismatchError(VersionConflictError):
    """Raised when a known document version differs from the stored one."""

    def __init__(self, doc_id: str, known_version: int | None, stored_version: int | None) -> None:
        super().__init__(
            f"Document '{doc_id}' has version {known_version}, but version {stored_version} is stored.",
            status_code=409,
        )
        self.doc_id = doc_id
        self.known_version = known_version
        self.stored_version = stored_version


class NotFoundError(BackendError):
    """Raised on HTTP 404 or when a requested document does not exist."""


class ShardFailureError(BackendError):
    """Raised when a search reports failed shards; the result set may be incomplete."""


class BulkSizeError(OdmError):
    """Raised when a bulk request is still too large at the minimal batch size."""


_STATUS_ERRORS: dict[int, type[BackendError]] = {
    404: NotFoundError,
    409: VersionConflictError,
    413: PayloadTooLargeError,
    429: RateLimitedError,
}


def error_for_status(status_code: int | None, message: str, body: Any = None) -> BackendError:
    """Return the ``BackendError`` subclass instance matching an HTTP status."""
    error_class = _STATUS_ERRORS.get(status_code or 0, BackendError)
    return error_class(message, status_code=status_code, body=body)
