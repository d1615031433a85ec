"""
Service runtime layer for thousand-words.

This package provides the shared error model:
- ServiceError: Standardized errors with retry semantics
- ConflictError, ValidationError, ConfigurationError: terminal failures
- BackendUnavailable, IOFailure: infrastructure failures
"""

from .errors import (
    BackendUnavailable,
    ConfigurationError,
    ConflictError,
    ErrorCode,
    IOFailure,
    RetryableError,
    ServiceError,
    TerminalError,
    ValidationError,
)

__all__ = [
    "BackendUnavailable",
    "ConfigurationError",
    "ConflictError",
    "ErrorCode",
    "IOFailure",
    "RetryableError",
    "ServiceError",
    "TerminalError",
    "ValidationError",
]
