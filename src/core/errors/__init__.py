"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AuthError,
    BrokerError,
    ChangeFeedError,
    CircuitOpenError,
    ConfigurationError,
    DeliveryError,
    ErrorCategory,
    PermanentError,
    PipelineError,
    ThrottlingError,
    TransientError,
    classify_exception,
    classify_http_status,
    is_retryable_error,
    wrap_exception,
)

__all__ = [
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "ThrottlingError",
    "PermanentError",
    "CircuitOpenError",
    # Domain errors
    "BrokerError",
    "ChangeFeedError",
    "ConfigurationError",
    "DeliveryError",
    # Classification utilities
    "classify_http_status",
    "classify_exception",
    "is_retryable_error",
    "wrap_exception",
]
