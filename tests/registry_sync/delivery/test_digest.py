"""Tests for digest scheduling and per-user digest processing."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from registry_sync.delivery.digest import (
    DIGEST_QUEUE,
    DigestProcessor,
    DigestResult,
    register_digest_schedules,
)
from registry_sync.delivery.store import MemoryNotificationStore, Notification
from registry_sync.queue.base import Job
from registry_sync.queue.memory import InMemoryBroker
from registry_sync.queue.queue import JobQueue
from registry_sync.queue.scheduler import RepeatableScheduler
from registry_sync.schemas.jobs import DigestJob

NOW = datetime(2024, 7, 1, 9, 0, tzinfo=UTC)
APP_URL = "https://packrun.dev"


def notification(name, severity="info", hours_ago=1, **kwargs):
    return Notification(
        package_name=name,
        new_version="2.0.0",
        created_at=NOW - timedelta(hours=hours_ago),
        severity=severity,
        **kwargs,
    )


@pytest.fixture
def client():
    mock = MagicMock()
    mock.send_email = AsyncMock(return_value={"id": "digest-1"})
    return mock


@pytest.fixture
def store():
    store = MemoryNotificationStore()
    store.add_user("u1", "one@example.com")
    store.add_user("u2", "two@example.com")
    store.add_user("u3", "three@example.com", digest_frequency="weekly")
    store.add_user("u4", "four@example.com", digest_enabled=False)
    return store


def make_processor(store, client, secret="s3cret"):
    return DigestProcessor(
        store,
        client,
        APP_URL,
        "https://packrun.dev/api/unsubscribe",
        unsubscribe_secret=secret,
        clock=lambda: NOW,
    )


class TestRegisterDigestSchedules:
    def test_registers_daily_and_weekly(self):
        scheduler = RepeatableScheduler(JobQueue(InMemoryBroker()), clock=lambda: NOW)

        register_digest_schedules(scheduler)

        entries = {e.name: e for e in scheduler.entries}
        assert set(entries) == {"daily-digest", "weekly-digest"}
        assert entries["daily-digest"].queue == DIGEST_QUEUE
        assert entries["daily-digest"].data == {"period": "daily"}
        assert entries["daily-digest"].next_fire == datetime(2024, 7, 2, 9, 0, tzinfo=UTC)
        # 2024-07-01 is a Monday; the next weekly fire is a week later
        assert entries["weekly-digest"].next_fire == datetime(2024, 7, 8, 9, 0, tzinfo=UTC)

    def test_registering_twice_replaces(self):
        scheduler = RepeatableScheduler(JobQueue(InMemoryBroker()), clock=lambda: NOW)

        register_digest_schedules(scheduler)
        register_digest_schedules(scheduler, {"daily": "30 8 * * *"})

        assert [e.name for e in scheduler.entries] == ["daily-digest"]

    @pytest.mark.asyncio
    async def test_fire_enqueues_digest_job(self):
        broker = InMemoryBroker()
        scheduler = RepeatableScheduler(JobQueue(broker), clock=lambda: NOW)
        register_digest_schedules(scheduler)

        fired = await scheduler.tick(datetime(2024, 7, 2, 9, 0, tzinfo=UTC))

        assert len(fired) == 1
        job = await broker.pull(DIGEST_QUEUE, timeout_seconds=0)
        assert DigestJob.model_validate(job.data).period == "daily"


class TestDigestProcessor:
    @pytest.mark.asyncio
    async def test_sends_one_email_per_user_with_updates(self, store, client):
        critical = notification(
            "lodash", severity="critical", is_security_update=True, vulnerabilities_fixed=1
        )
        store.add_notification("u1", critical)
        store.add_notification("u1", notification("react"))

        result = await make_processor(store, client).process_digests(DigestJob(period="daily"))

        assert result == DigestResult(sent=1, failed=0, skipped=1)
        to, subject, html = client.send_email.await_args.args
        assert to == "one@example.com"
        assert subject == "🔒 Daily digest: 1 security update"
        assert "lodash" in html and "react" in html
        assert client.send_email.await_args.kwargs["unsubscribe_url"].startswith(
            "https://packrun.dev/api/unsubscribe?token="
        )

    @pytest.mark.asyncio
    async def test_window_excludes_old_and_read_notifications(self, store, client):
        store.add_notification("u1", notification("old", hours_ago=25))
        store.add_notification("u1", notification("seen"), read=True)

        result = await make_processor(store, client).process_digests(DigestJob(period="daily"))

        assert result.sent == 0
        client.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_weekly_window_is_seven_days(self, store, client):
        store.add_notification("u3", notification("vite", hours_ago=24 * 6))

        result = await make_processor(store, client).process_digests(DigestJob(period="weekly"))

        assert result.sent == 1
        _, subject, _ = client.send_email.await_args.args
        assert subject == "📦 Weekly digest: 1 package update"

    @pytest.mark.asyncio
    async def test_user_failure_is_counted_and_processing_continues(self, store, client):
        store.add_notification("u1", notification("a"))
        store.add_notification("u2", notification("b"))
        client.send_email.side_effect = [RuntimeError("smtp down"), {"id": "ok"}]

        result = await make_processor(store, client).process_digests(DigestJob(period="daily"))

        assert result == DigestResult(sent=1, failed=1, skipped=0)

    @pytest.mark.asyncio
    async def test_unconfigured_client_skips(self, store):
        store.add_notification("u1", notification("a"))

        result = await make_processor(store, None).process_digests(DigestJob(period="daily"))

        assert result.sent == 0
        assert result.skipped == 2

    @pytest.mark.asyncio
    async def test_handle_parses_job_payload(self, store, client):
        store.add_notification("u1", notification("a"))
        processor = make_processor(store, client)

        await processor.handle(Job(id="d-1", queue=DIGEST_QUEUE, data={"period": "daily"}))

        client.send_email.assert_awaited_once()
