"""
Unified exception hierarchy for registry_sync.

Provides typed exceptions with retry classification so workers, HTTP
clients and the job queue can agree on what a failure means.
"""

import errno

# Canonical enum; comparing members of two distinct enums is always False
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class AuthError(PipelineError):
    """Credential rejected by an upstream API (401)."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    """Temporary failure; the job should be retried."""

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientError):
    """Rate limited (429) - should back off."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after


class PermanentError(PipelineError):
    """Failure that will not succeed on retry."""

    category = ErrorCategory.PERMANENT


class CircuitOpenError(PipelineError):
    """Circuit breaker is open, rejecting requests."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(
        self,
        circuit_name: str,
        retry_after: float,
        cause: Exception | None = None,
    ):
        message = f"Circuit '{circuit_name}' is open"
        super().__init__(message, cause, {"circuit_name": circuit_name})
        self.circuit_name = circuit_name
        self.retry_after = retry_after

    @property
    def is_retryable(self) -> bool:
        # The queue retries later; by then the circuit may have closed
        return True


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class ChangeFeedError(PipelineError):
    """The change feed could not be opened; surfaced to the process supervisor."""

    category = ErrorCategory.TRANSIENT


class BrokerError(TransientError):
    """The job broker is unreachable or rejected an operation."""


class ConfigurationError(PermanentError):
    """Missing or invalid configuration (settings, integration records)."""


class DeliveryError(PipelineError):
    """A delivery channel API rejected a message."""


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify an HTTP status code into an error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def classify_os_error(error: OSError) -> ErrorCategory:
    """Disk full, read-only filesystem and permission errors are permanent."""
    permanent_errnos = (errno.ENOSPC, errno.EROFS, errno.EACCES, errno.EPERM)
    return ErrorCategory.PERMANENT if error.errno in permanent_errnos else ErrorCategory.TRANSIENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an arbitrary exception into an error category."""
    if isinstance(exc, PipelineError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "server disconnected",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if isinstance(exc, OSError):
        return classify_os_error(exc)

    if "401" in exc_str or "unauthorized" in exc_str:
        return ErrorCategory.AUTH

    if "429" in exc_str or "rate limit" in exc_str:
        return ErrorCategory.TRANSIENT

    if any(code in exc_str for code in ("502", "503", "504")):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, PipelineError):
        return exc.is_retryable
    return classify_exception(exc) in (
        ErrorCategory.TRANSIENT,
        ErrorCategory.AUTH,
        ErrorCategory.UNKNOWN,
    )


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Wrap a generic exception in the matching PipelineError subclass."""
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    context = context or {}
    context.setdefault("error_type", type(exc).__name__)

    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        if "429" in str(exc):
            return ThrottlingError(str(exc), cause=exc, context=context)
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
