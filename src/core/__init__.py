"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    resilience  - Circuit breaker, retry with backoff, rate limiting
    logging     - Structured JSON logging with context propagation
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization, worker ids

Design Principles:
    - No dependencies on the registry, search index, or job broker
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
