"""Tests for the Kafka broker encoding and delayed delivery, with aiokafka mocked out."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import KafkaError

from core.errors import BrokerError
from registry_sync.queue.base import Job
from registry_sync.queue.kafka import KafkaBroker


def started_broker(clock=lambda: 1000.0):
    broker = KafkaBroker("localhost:9092", topic_prefix="registry-sync", clock=clock)
    broker._producer = AsyncMock()
    broker._started = True
    return broker


def message(payload, offset=7):
    return SimpleNamespace(value=json.dumps(payload).encode(), offset=offset)


class TestKafkaBroker:
    def test_topic_per_queue(self):
        assert KafkaBroker("k:9092").topic_for("sync") == "registry-sync.sync"
        assert KafkaBroker("k:9092", topic_prefix="").topic_for("sync") == "sync"

    @pytest.mark.asyncio
    async def test_publish_before_start_raises(self):
        broker = KafkaBroker("localhost:9092")

        with pytest.raises(BrokerError, match="not started"):
            await broker.publish(Job(id="a", queue="sync", data={}))

    @pytest.mark.asyncio
    async def test_publish_keys_by_job_id_and_stamps_not_before(self):
        broker = started_broker()

        await broker.publish(Job(id="sync:a:1", queue="sync", data={"x": 1}), delay_seconds=30)

        call = broker._producer.send_and_wait.await_args
        assert call.args[0] == "registry-sync.sync"
        assert call.kwargs["key"] == b"sync:a:1"
        payload = json.loads(call.kwargs["value"])
        assert payload["not_before"] == 1030.0
        assert payload["data"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_publish_failure_becomes_broker_error(self):
        broker = started_broker()
        broker._producer.send_and_wait.side_effect = KafkaError("down")

        with pytest.raises(BrokerError):
            await broker.publish(Job(id="a", queue="sync", data={}))

    @pytest.mark.asyncio
    async def test_pull_decodes_job_and_ack_commits_next_offset(self):
        broker = started_broker()
        tp = TopicPartition("registry-sync.sync", 0)
        consumer = AsyncMock()
        consumer.getmany.return_value = {
            tp: [message({"id": "sync:a:1", "queue": "sync", "data": {}, "attempt": 1})]
        }
        broker._consumers["sync"] = consumer

        job = await broker.pull("sync", timeout_seconds=0.1)
        await broker.ack(job)

        assert job.id == "sync:a:1"
        assert job.attempt == 1
        consumer.commit.assert_awaited_once_with({tp: 8})

    @pytest.mark.asyncio
    async def test_undecodable_message_is_committed_and_skipped(self):
        broker = started_broker()
        tp = TopicPartition("registry-sync.sync", 0)
        consumer = AsyncMock()
        consumer.getmany.return_value = {
            tp: [SimpleNamespace(value=b"not json", offset=3)]
        }
        broker._consumers["sync"] = consumer

        assert await broker.pull("sync") is None
        consumer.commit.assert_awaited_once_with({tp: 4})

    @pytest.mark.asyncio
    async def test_out_of_order_ack_waits_for_earlier_offset(self):
        broker = started_broker()
        tp = TopicPartition("registry-sync.sync", 0)
        consumer = AsyncMock()
        consumer.getmany.side_effect = [
            {tp: [message({"id": "slow", "queue": "sync", "data": {}}, offset=10)]},
            {tp: [message({"id": "fast", "queue": "sync", "data": {}}, offset=11)]},
        ]
        broker._consumers["sync"] = consumer

        slow = await broker.pull("sync")
        fast = await broker.pull("sync")
        await broker.ack(fast)

        consumer.commit.assert_not_awaited()

        await broker.ack(slow)

        consumer.commit.assert_awaited_once_with({tp: 12})

    @pytest.mark.asyncio
    async def test_commits_never_move_backwards(self):
        broker = started_broker()
        tp = TopicPartition("registry-sync.sync", 0)
        consumer = AsyncMock()
        consumer.getmany.side_effect = [
            {tp: [message({"id": f"job-{offset}", "queue": "sync", "data": {}}, offset=offset)]}
            for offset in (10, 11, 12)
        ]
        broker._consumers["sync"] = consumer

        jobs = [await broker.pull("sync") for _ in range(3)]
        await broker.ack(jobs[0])
        await broker.ack(jobs[2])
        await broker.ack(jobs[1])

        commits = [call.args[0][tp] for call in consumer.commit.await_args_list]
        assert commits == [11, 13]
