"""
Circuit breaker guarding calls to upstream HTTP services.

When the registry, the search index, or a delivery channel goes down,
every job would otherwise burn its retry budget against a dead endpoint.
The breaker fails fast instead, letting the queue back off.

States:
- CLOSED: requests pass through, consecutive failures are counted
- OPEN: requests rejected with CircuitOpenError until the timeout elapses
- HALF_OPEN: a limited number of trial requests decide whether to close

Usage:
    breaker = get_circuit_breaker("registry", REGISTRY_CIRCUIT_CONFIG)
    result = await breaker.call_async(lambda: fetch())
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from core.errors.exceptions import CircuitOpenError
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive counted failures before opening
    failure_threshold: int = 5

    # Successes in half-open before closing
    success_threshold: int = 2

    # Seconds spent open before probing
    timeout_seconds: float = 30.0

    half_open_max_calls: int = 3

    # Auth failures need a credential fix, not an open circuit
    ignore_auth_errors: bool = True


REGISTRY_CIRCUIT_CONFIG = CircuitBreakerConfig(
    failure_threshold=10,
    success_threshold=2,
    timeout_seconds=30.0,
    half_open_max_calls=5,
    ignore_auth_errors=False,
)

SEARCH_INDEX_CIRCUIT_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    success_threshold=2,
    timeout_seconds=30.0,
)

DELIVERY_CIRCUIT_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    success_threshold=1,
    timeout_seconds=60.0,
    half_open_max_calls=1,
)


@dataclass
class CircuitStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    current_state: str = "closed"


def _category_of(exc: Exception) -> ErrorCategory:
    category = getattr(exc, "category", None)
    if isinstance(category, ErrorCategory):
        return category
    return ErrorCategory.UNKNOWN


class CircuitBreaker:
    """Consecutive-failure circuit breaker. Thread-safe."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None
        self._half_open_calls = 0

        self._stats = CircuitStats()
        self._lock = threading.RLock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        with self._lock:
            self._maybe_half_open()
            return CircuitStats(
                total_calls=self._stats.total_calls,
                successful_calls=self._stats.successful_calls,
                failed_calls=self._stats.failed_calls,
                rejected_calls=self._stats.rejected_calls,
                state_changes=self._stats.state_changes,
                current_state=self._state.value,
            )

    def _counts_as_failure(self, exc: Exception) -> bool:
        category = _category_of(exc)
        if category == ErrorCategory.AUTH and self.config.ignore_auth_errors:
            return False
        # A 4xx means the request was wrong, not that the service is down
        return category != ErrorCategory.PERMANENT

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.config.timeout_seconds:
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._stats.state_changes += 1
        self._stats.current_state = new_state.value

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
            logger.info("Circuit closed: circuit_name=%s", self.name)
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0
            logger.info("Circuit half-open: circuit_name=%s", self.name)
        else:
            self._success_count = 0
            self._opened_at = self._clock()
            logger.warning(
                "Circuit open: circuit_name=%s, timeout_seconds=%.1f",
                self.name,
                self.config.timeout_seconds,
            )

        if self.on_state_change:
            self.on_state_change(old_state, new_state)

    def _before_call(self) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._maybe_half_open()

            if self._state == CircuitState.CLOSED:
                return
            if (
                self._state == CircuitState.HALF_OPEN
                and self._half_open_calls < self.config.half_open_max_calls
            ):
                self._half_open_calls += 1
                return

            self._stats.rejected_calls += 1
            raise CircuitOpenError(self.name, self.retry_after())

    def retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.timeout_seconds - (self._clock() - self._opened_at))

    def check(self) -> None:
        """Raise CircuitOpenError if a call would currently be rejected."""
        self._before_call()

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self, exc: Exception) -> None:
        with self._lock:
            self._stats.failed_calls += 1
            if not self._counts_as_failure(exc):
                logger.debug(
                    "Failure not counted: circuit_name=%s, error_type=%s",
                    self.name,
                    type(exc).__name__,
                )
                return

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                return

            self._failure_count += 1
            if self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def call_async(self, func: Callable[[], T]) -> T:
        self._before_call()
        try:
            result = await func()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0


_breakers: dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(
    name: str,
    config: CircuitBreakerConfig | None = None,
) -> CircuitBreaker:
    with _registry_lock:
        if name not in _breakers:
            _breakers[name] = CircuitBreaker(name, config)
            logger.debug("Created circuit breaker: circuit_name=%s", name)
        return _breakers[name]


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
    "get_circuit_breaker",
    "REGISTRY_CIRCUIT_CONFIG",
    "SEARCH_INDEX_CIRCUIT_CONFIG",
    "DELIVERY_CIRCUIT_CONFIG",
]
