"""Tests for the TTL cache."""

from registry_sync.cache import MISSING, TTLCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_get_returns_value_until_expiry():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("downloads:react", 42, ttl=10)

    clock.now = 109.9
    assert cache.get("downloads:react") == 42

    clock.now = 110.0
    assert cache.get("downloads:react") is MISSING
    assert len(cache) == 0


def test_missing_is_falsy_but_zero_is_cached():
    cache = TTLCache(clock=FakeClock())
    cache.set("downloads:new-package", 0, ttl=10)

    assert not MISSING
    assert cache.get("downloads:new-package") == 0
    assert cache.get("downloads:unknown") is MISSING


def test_non_positive_ttl_removes_entry():
    cache = TTLCache(clock=FakeClock())
    cache.set("k", 1, ttl=10)

    cache.set("k", 2, ttl=0)

    assert cache.get("k") is MISSING


def test_oldest_entry_evicted_past_capacity():
    cache = TTLCache(clock=FakeClock(), max_entries=2)
    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=10)
    cache.set("c", 3, ttl=10)

    assert cache.get("a") is MISSING
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_purge_expired_counts_removed():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2, ttl=100)

    clock.now += 5

    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_delete_and_clear():
    cache = TTLCache(clock=FakeClock())
    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=10)

    cache.delete("a")
    assert cache.get("a") is MISSING

    cache.clear()
    assert len(cache) == 0
