"""
Rate limiters for outbound API calls and queue throughput.

Two algorithms are provided:

- RateLimiter: token bucket. Smooths request rate against an HTTP API
  while allowing short bursts. Used by the HTTP clients.
- SlidingWindowRateLimiter: at most N acquisitions in any rolling window
  of D seconds. Used by queue workers to respect per-topic quotas
  (e.g. "5 emails per second"), independent of worker concurrency.

Usage:
    limiter = RateLimiter(calls_per_second=10)

    await limiter.acquire()

    window = SlidingWindowRateLimiter(max_calls=5, duration_seconds=1.0)
    await window.acquire()
"""

import asyncio
import logging
import os
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for token bucket behavior."""

    calls_per_second: float = 10.0

    # Tokens that can accumulate; defaults to calls_per_second (1 second of burst)
    burst_capacity: Optional[float] = None

    enabled: bool = True

    name: str = "rate_limiter"


REGISTRY_API_RATE_CONFIG = RateLimiterConfig(
    calls_per_second=float(os.getenv("REGISTRY_API_RATE_LIMIT_PER_SECOND", "50")),
    burst_capacity=None,
    enabled=os.getenv("REGISTRY_API_RATE_LIMIT_ENABLED", "true").lower() == "true",
    name="registry_api",
)

SEARCH_INDEX_RATE_CONFIG = RateLimiterConfig(
    calls_per_second=float(os.getenv("SEARCH_INDEX_RATE_LIMIT_PER_SECOND", "20")),
    burst_capacity=None,
    enabled=os.getenv("SEARCH_INDEX_RATE_LIMIT_ENABLED", "false").lower() == "true",
    name="search_index",
)


class RateLimiter:
    """
    Token bucket rate limiter for async operations.

    Attributes:
        config: Configuration for rate limiting behavior
        _tokens: Current token count (protected by _lock)
        _last_update: Last time tokens were refilled
    """

    def __init__(
        self,
        config: Optional[RateLimiterConfig] = None,
        calls_per_second: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        if config is None:
            config = RateLimiterConfig(
                calls_per_second=calls_per_second or 10.0,
                enabled=enabled if enabled is not None else True,
            )
        elif calls_per_second is not None or enabled is not None:
            config = RateLimiterConfig(
                calls_per_second=calls_per_second or config.calls_per_second,
                burst_capacity=config.burst_capacity,
                enabled=enabled if enabled is not None else config.enabled,
                name=config.name,
            )

        self.config = config
        self._rate = config.calls_per_second
        self._burst_capacity = config.burst_capacity or config.calls_per_second
        self._tokens = self._burst_capacity
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()
        self._waits = 0

        if not config.enabled:
            logger.debug(
                "Rate limiter disabled: name=%s",
                config.name,
                extra={"rate_limiter": config.name},
            )

    async def acquire(self, tokens: float = 1.0) -> None:
        """
        Take tokens from the bucket, sleeping until they are available.

        Raises:
            ValueError: If tokens requested exceeds burst capacity
        """
        if not self.config.enabled:
            return

        if tokens > self._burst_capacity:
            raise ValueError(
                f"Requested tokens ({tokens}) exceeds burst capacity ({self._burst_capacity})"
            )

        async with self._lock:
            now = time.monotonic()
            self._tokens = min(
                self._burst_capacity, self._tokens + (now - self._last_update) * self._rate
            )
            self._last_update = now

            if self._tokens >= tokens:
                self._tokens -= tokens
                return

            wait_time = (tokens - self._tokens) / self._rate
            self._waits += 1
            logger.debug(
                "Rate limit reached: name=%s wait=%.3fs",
                self.config.name,
                wait_time,
                extra={"rate_limiter": self.config.name, "wait_seconds": wait_time},
            )
            await asyncio.sleep(wait_time)
            self._tokens = 0
            self._last_update = time.monotonic()

    def get_stats(self) -> dict:
        return {
            "name": self.config.name,
            "enabled": self.config.enabled,
            "calls_per_second": self._rate,
            "burst_capacity": self._burst_capacity,
            "tokens_available": self._tokens,
            "waits": self._waits,
        }


class SlidingWindowRateLimiter:
    """
    Allow at most ``max_calls`` acquisitions in any window of ``duration_seconds``.

    The clock and sleep functions are injectable so tests can drive time
    deterministically.
    """

    def __init__(
        self,
        max_calls: int,
        duration_seconds: float,
        name: str = "window",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        if duration_seconds <= 0:
            raise ValueError(f"duration_seconds must be > 0, got {duration_seconds}")

        self.max_calls = max_calls
        self.duration_seconds = duration_seconds
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self.duration_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def try_acquire(self) -> bool:
        """Record an acquisition if the window has room, without waiting."""
        now = self._clock()
        self._evict(now)
        if len(self._timestamps) < self.max_calls:
            self._timestamps.append(now)
            return True
        return False

    def time_until_available(self) -> float:
        now = self._clock()
        self._evict(now)
        if len(self._timestamps) < self.max_calls:
            return 0.0
        return max(0.0, self._timestamps[0] + self.duration_seconds - now)

    async def acquire(self) -> None:
        """Wait until the window has room, then record an acquisition."""
        async with self._lock:
            while not self.try_acquire():
                wait_time = self.time_until_available()
                logger.debug(
                    "Window limit reached: name=%s wait=%.3fs",
                    self.name,
                    wait_time,
                    extra={"rate_limiter": self.name, "wait_seconds": wait_time},
                )
                await self._sleep(wait_time)

    def get_stats(self) -> dict:
        self._evict(self._clock())
        return {
            "name": self.name,
            "max_calls": self.max_calls,
            "duration_seconds": self.duration_seconds,
            "in_window": len(self._timestamps),
        }


_rate_limiters: dict[str, RateLimiter] = {}


def get_rate_limiter(
    name: str,
    config: Optional[RateLimiterConfig] = None,
) -> RateLimiter:
    """Get or create a named token bucket (config only used on first call)."""
    if name not in _rate_limiters:
        if config is None:
            config = RateLimiterConfig(name=name)
        _rate_limiters[name] = RateLimiter(config=config)
    return _rate_limiters[name]


__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
    "SlidingWindowRateLimiter",
    "get_rate_limiter",
    "REGISTRY_API_RATE_CONFIG",
    "SEARCH_INDEX_RATE_CONFIG",
]
