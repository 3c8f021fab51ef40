"""Tests for worker wiring and the runner registry."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from config.config import QUEUE_NAMES, config_from_dict
from registry_sync.delivery import MemoryNotificationStore, PostgresNotificationStore
from registry_sync.queue import InMemoryBroker, JsonDedupStore, MemoryDedupStore
from registry_sync.queue.kafka import KafkaBroker
from registry_sync.runners.common import (
    _start_with_retry,
    build_queue_runtime,
    execute_loop_with_shutdown,
)
from registry_sync.runners.registry import WORKER_REGISTRY, run_worker_from_registry
from registry_sync.runners.workers import _email_client, _notification_store


class TestBuildQueueRuntime:
    def test_memory_backend_defaults(self):
        runtime = build_queue_runtime(config_from_dict({}))

        assert isinstance(runtime.broker, InMemoryBroker)
        assert isinstance(runtime.queue.dedup_store, MemoryDedupStore)
        assert set(runtime.options) == set(QUEUE_NAMES)

    def test_dedup_dir_selects_json_store(self, tmp_path):
        config = config_from_dict({"queue": {"dedup_dir": str(tmp_path / "dedup")}})

        runtime = build_queue_runtime(config)

        assert isinstance(runtime.queue.dedup_store, JsonDedupStore)

    def test_kafka_backend(self):
        config = config_from_dict(
            {"queue": {"backend": "kafka", "bootstrap_servers": "kafka:9092"}}
        )

        runtime = build_queue_runtime(config, client_id="sync-0")

        assert isinstance(runtime.broker, KafkaBroker)
        assert runtime.broker.topic_for("sync") == "registry-sync.sync"

    def test_topic_options_applied(self):
        config = config_from_dict(
            {
                "queue": {
                    "defaults": {"attempts": 3},
                    "topics": {"chat-delivery": {"limiter_max": 1, "limiter_duration_seconds": 1}},
                }
            }
        )

        runtime = build_queue_runtime(config)

        chat = runtime.options["chat-delivery"]
        assert chat.attempts == 3
        assert chat.limiter.max_jobs == 1
        assert runtime.options["sync"].limiter is None


class TestStartWithRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        start = AsyncMock(side_effect=[OSError("refused"), None])

        with patch("registry_sync.runners.common.asyncio.sleep", new=AsyncMock()) as sleep:
            await _start_with_retry(start, "broker", max_retries=3, backoff_base=2)

        assert start.await_count == 2
        sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_reraises_after_exhaustion(self):
        start = AsyncMock(side_effect=OSError("refused"))

        with patch("registry_sync.runners.common.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(OSError):
                await _start_with_retry(start, "broker", max_retries=2, backoff_base=1)

        assert start.await_count == 2


@pytest.mark.asyncio
async def test_execute_loop_passes_shutdown_event():
    shutdown = asyncio.Event()
    seen = []

    async def loop_fn(event):
        seen.append(event)

    await execute_loop_with_shutdown(loop_fn, "backfill", shutdown)

    assert seen == [shutdown]


class TestRegistry:
    def test_singletons(self):
        singletons = {name for name, entry in WORKER_REGISTRY.items() if entry.get("singleton")}

        assert singletons == {"changes", "backfill", "digest"}

    @pytest.mark.asyncio
    async def test_unknown_worker_raises(self):
        config = config_from_dict({})

        with pytest.raises(ValueError, match="Unknown worker"):
            await run_worker_from_registry(
                "nope", config, build_queue_runtime(config), asyncio.Event()
            )

    @pytest.mark.asyncio
    async def test_dispatches_to_runner(self):
        config = config_from_dict({})
        runtime = build_queue_runtime(config)
        shutdown = asyncio.Event()
        runner = AsyncMock()

        with patch.dict(WORKER_REGISTRY, {"sync": {"runner": runner}}):
            await run_worker_from_registry("sync", config, runtime, shutdown, instance_id="0")

        runner.assert_awaited_once_with(
            config, runtime, shutdown, instance_id="0", on_heartbeat=None
        )


class TestDeliveryWiring:
    def test_memory_store_without_database_url(self):
        assert isinstance(_notification_store(config_from_dict({})), MemoryNotificationStore)

    def test_postgres_store_with_database_url(self):
        config = config_from_dict({"database": {"url": "postgres://localhost/packrun"}})

        assert isinstance(_notification_store(config), PostgresNotificationStore)

    def test_missing_resend_key_disables_email(self):
        assert _email_client(config_from_dict({})) is None
