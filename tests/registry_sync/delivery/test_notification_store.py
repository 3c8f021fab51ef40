"""Tests for notification store lookups."""

from datetime import UTC, datetime, timedelta

import pytest

from core.errors import ConfigurationError
from registry_sync.delivery.store import (
    MemoryNotificationStore,
    Notification,
    PostgresNotificationStore,
    severity_rank,
)

NOW = datetime(2024, 7, 1, tzinfo=UTC)


def notification(name, severity, minutes_ago):
    return Notification(
        package_name=name,
        new_version="1.0.0",
        created_at=NOW - timedelta(minutes=minutes_ago),
        severity=severity,
    )


def test_severity_rank_orders_unknown_last():
    assert severity_rank("critical") < severity_rank("important") < severity_rank("info")
    assert severity_rank("something-else") == severity_rank("info")


@pytest.mark.asyncio
async def test_unread_notifications_sorted_by_severity_then_newest():
    store = MemoryNotificationStore()
    store.add_notification("u1", notification("info-old", "info", 30))
    store.add_notification("u1", notification("crit", "critical", 20))
    store.add_notification("u1", notification("info-new", "info", 5))
    store.add_notification("u1", notification("imp", "important", 10))
    store.add_notification("u2", notification("other-user", "critical", 1))

    result = await store.get_unread_notifications("u1", NOW - timedelta(hours=1))

    assert [n.package_name for n in result] == ["crit", "imp", "info-new", "info-old"]


@pytest.mark.asyncio
async def test_unread_notifications_respects_limit():
    store = MemoryNotificationStore()
    for i in range(5):
        store.add_notification("u1", notification(f"p{i}", "info", i))

    result = await store.get_unread_notifications("u1", NOW - timedelta(hours=1), limit=2)

    assert [n.package_name for n in result] == ["p0", "p1"]


@pytest.mark.asyncio
async def test_digest_users_filtered_by_frequency_and_enabled():
    store = MemoryNotificationStore()
    store.add_user("u1", "a@example.com")
    store.add_user("u2", "b@example.com", digest_frequency="weekly")
    store.add_user("u3", "c@example.com", digest_enabled=False)

    daily = await store.get_digest_users("daily")

    assert [u.user_id for u in daily] == ["u1"]


@pytest.mark.asyncio
async def test_postgres_store_requires_database_url():
    store = PostgresNotificationStore("")

    with pytest.raises(ConfigurationError):
        await store.get_digest_users("daily")
