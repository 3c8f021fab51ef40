"""
Core types used across modules.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, 429/503 responses)
        AUTH: Credential rejected by an upstream API (401)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., 4xx responses, validation errors, configuration issues)
        CIRCUIT_OPEN: Circuit breaker is open, rejecting fast without attempting
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
