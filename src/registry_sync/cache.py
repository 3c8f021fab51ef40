"""
TTL cache with an injectable clock.

Components that memoize lookups (weekly download counts, for example) take
a cache instance instead of holding a module-level dict, so tests can drive
expiry with a fake clock.

Usage:
    cache = TTLCache()
    value = cache.get("downloads:react")
    if value is MISSING:
        value = await fetch()
        cache.set("downloads:react", value, ttl=3600)
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Generic, TypeVar

V = TypeVar("V")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class TTLCache(Generic[V]):
    """Key/value cache where every entry carries its own caller-supplied TTL."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int | None = 10_000,
    ):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()

    def get(self, key: str) -> V | Any:
        """Return the cached value or ``MISSING`` if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return MISSING
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return MISSING
        return value

    def set(self, key: str, value: V, ttl: float) -> None:
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._clock() + ttl, value)
        self._entries.move_to_end(key)
        if self._max_entries is not None:
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
