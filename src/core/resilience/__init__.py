"""
Resilience patterns module.

Components:
    - CircuitBreaker: State machine (closed/open/half-open)
    - RetryConfig / with_retry_async: in-process retry with jitter
    - BackoffPolicy: per-topic job retry curve
    - RateLimiter: Token bucket rate limiting
    - SlidingWindowRateLimiter: max N calls per rolling window
"""

from .circuit_breaker import (
    DELIVERY_CIRCUIT_CONFIG,
    REGISTRY_CIRCUIT_CONFIG,
    SEARCH_INDEX_CIRCUIT_CONFIG,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    CircuitStats,
    get_circuit_breaker,
)
from .rate_limiter import (
    REGISTRY_API_RATE_CONFIG,
    SEARCH_INDEX_RATE_CONFIG,
    RateLimiter,
    RateLimiterConfig,
    SlidingWindowRateLimiter,
    get_rate_limiter,
)
from .retry import (
    CATALOG_RETRY,
    DEFAULT_RETRY,
    BackoffPolicy,
    RetryConfig,
    with_retry_async,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
    "get_circuit_breaker",
    "REGISTRY_CIRCUIT_CONFIG",
    "SEARCH_INDEX_CIRCUIT_CONFIG",
    "DELIVERY_CIRCUIT_CONFIG",
    # Rate Limiter
    "RateLimiter",
    "RateLimiterConfig",
    "SlidingWindowRateLimiter",
    "get_rate_limiter",
    "REGISTRY_API_RATE_CONFIG",
    "SEARCH_INDEX_RATE_CONFIG",
    # Retry
    "BackoffPolicy",
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "CATALOG_RETRY",
]
