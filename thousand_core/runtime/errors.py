"""
Standardized error model with retry semantics.

This module defines the hierarchy of service errors raised by the story
index and content store backends. Each error classifies whether the failed
operation is retryable, so the orchestrating layer can decide on a retry
policy; the storage core itself never retries.

Not-found is deliberately absent: point lookups return ``None``.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Base error for every storage backend and the story service.

    Carries a machine-readable ``code``, a ``message_safe`` that may be shown
    to users, an optional ``message_debug`` for logs, the ``retryable``
    flag, the driver exception in ``cause`` and a short ``debug_id`` that
    ties an API error response to the matching log line.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Payload for API error responses; debug details are left out."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """Transient failure: the caller may retry the same operation."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=True,
            cause=cause,
            debug_id=debug_id,
        )


class TerminalError(ServiceError):
    """Permanent failure: retrying the same call will fail the same way."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
        )


# Common error codes
class ErrorCode:
    """Standard error codes for common failure scenarios."""

    # Network/connectivity
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Storage
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    STORAGE_READ_ERROR = "STORAGE_READ_ERROR"
    STORAGE_WRITE_ERROR = "STORAGE_WRITE_ERROR"

    # Validation / state
    INVALID_INPUT = "INVALID_INPUT"
    CONFLICT = "CONFLICT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ConflictError(TerminalError):
    """A uniqueness constraint was violated (e.g. a reused storage key)."""

    def __init__(
        self,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            code=ErrorCode.CONFLICT,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )


class ValidationError(TerminalError):
    """Input was rejected before reaching a backend."""

    def __init__(
        self,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            code=ErrorCode.INVALID_INPUT,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )


class ConfigurationError(TerminalError):
    """Required configuration for the selected backend is missing or invalid."""

    def __init__(self, message_safe: str, message_debug: str | None = None):
        super().__init__(
            code=ErrorCode.CONFIGURATION_ERROR,
            message_safe=message_safe,
            message_debug=message_debug,
        )


class BackendUnavailable(RetryableError):
    """The backing database or object store could not be reached."""

    def __init__(
        self,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        code: str = ErrorCode.SERVICE_UNAVAILABLE,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )


class IOFailure(ServiceError):
    """A storage-layer read or write failed for a reason other than connectivity.

    Permission errors, full disks and malformed responses land here. These
    are not retryable by default.
    """

    def __init__(
        self,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        code: str = ErrorCode.STORAGE_WRITE_ERROR,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
        )
