"""
Retry utilities with exception-aware handling.

Two pieces live here:

- BackoffPolicy: the per-topic job retry curve used by the job queue
  (``fixed`` or ``exponential``), configured explicitly per topic.
- RetryConfig / with_retry_async: in-process retry around a single
  operation, using the error taxonomy to decide what is worth retrying:
    - Transient errors: retry with exponential backoff and jitter
    - Permanent errors: fail immediately
    - Throttling: honour the server's retry_after when present
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Literal

from core.errors.exceptions import (
    PipelineError,
    ThrottlingError,
    classify_exception,
    wrap_exception,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

BackoffType = Literal["fixed", "exponential"]


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay curve between job attempts.

    Attempt numbers are 1-based: after the first failed attempt the delay
    is ``delay_seconds``; exponential doubles it for each further attempt
    (2s, 4s, 8s for a 2 second base).
    """

    type: BackoffType = "exponential"
    delay_seconds: float = 1.0
    max_delay_seconds: float = 300.0

    def get_delay(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        if self.type == "fixed":
            delay = self.delay_seconds
        else:
            delay = self.delay_seconds * (2 ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


@dataclass
class RetryConfig:
    """Configuration for in-process retry."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    respect_permanent: bool = True

    # Use retry_after from ThrottlingError when available
    respect_retry_after: bool = True

    never_retry: set[type[Exception]] = field(default_factory=set)

    def __post_init__(self):
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """
        Delay with equal jitter for a 0-indexed attempt.

        Half the exponential delay is fixed, half is random, so synchronized
        callers spread out.
        """
        if (
            self.respect_retry_after
            and isinstance(error, ThrottlingError)
            and error.retry_after
        ):
            return min(error.retry_after, self.max_delay)

        base_delay = self.base_delay * (self.exponential_base**attempt)
        delay = (base_delay / 2) + random.uniform(0, base_delay / 2)
        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts - 1:
            return False

        if self.never_retry and isinstance(error, tuple(self.never_retry)):
            return False

        if isinstance(error, PipelineError):
            if self.respect_permanent and not error.is_retryable:
                return False
            return error.is_retryable

        category = classify_exception(error)
        if self.respect_permanent and category == ErrorCategory.PERMANENT:
            return False
        return category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)


DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)
CATALOG_RETRY = RetryConfig(max_attempts=5, base_delay=2.0, max_delay=60.0)


def with_retry_async(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    wrap_errors: bool = True,
):
    """
    Decorator retrying an async function according to ``config``.

    Usage:
        @with_retry_async(config=CATALOG_RETRY)
        async def fetch_page(...):
            ...
    """
    if config is None:
        config = DEFAULT_RETRY

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    wrapped = (
                        wrap_exception(e)
                        if wrap_errors and not isinstance(e, PipelineError)
                        else e
                    )
                    if not config.should_retry(wrapped, attempt):
                        logger.warning(
                            "Giving up on %s after %d attempt(s): %s",
                            func.__name__,
                            attempt + 1,
                            str(e)[:200],
                            extra={
                                "operation": func.__name__,
                                "attempt": attempt + 1,
                                "error_type": type(wrapped).__name__,
                            },
                        )
                        if wrapped is e:
                            raise
                        raise wrapped from e

                    delay = config.get_delay(attempt, wrapped)
                    logger.warning(
                        "Retryable error for %s, will retry",
                        func.__name__,
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "delay_seconds": round(delay, 2),
                            "error_message": str(e)[:200],
                        },
                    )
                    if on_retry:
                        on_retry(wrapped, attempt, delay)
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 0:
                    logger.info(
                        "Retry succeeded for %s after %d attempts",
                        func.__name__,
                        attempt + 1,
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "BackoffPolicy",
    "BackoffType",
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "CATALOG_RETRY",
]
