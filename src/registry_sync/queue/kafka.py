"""
Kafka-backed broker.

One topic per queue name (``{prefix}.{queue}``), job id as the message key.
Delayed retries carry a ``not_before`` wall-clock timestamp; the pulling
task sleeps until then before handing the job to the worker.

Worker slots share one consumer per topic and finish jobs out of order, so
acks are tracked per partition and only the offset below the lowest job
still in flight is committed. A crash redelivers every unsettled job
(at-least-once) and the committed offset never moves backwards.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.errors import KafkaError

from core.errors import BrokerError
from core.utils.json_serializers import json_serializer
from registry_sync.queue.base import Job

logger = logging.getLogger(__name__)


class KafkaBroker:
    def __init__(
        self,
        bootstrap_servers: str,
        topic_prefix: str = "registry-sync",
        group_prefix: str = "registry-sync",
        client_id: str | None = None,
        producer_config: dict[str, Any] | None = None,
        consumer_config: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.topic_prefix = topic_prefix
        self.group_prefix = group_prefix
        self.client_id = client_id
        self.producer_config = producer_config or {}
        self.consumer_config = consumer_config or {}
        self._clock = clock

        self._producer: AIOKafkaProducer | None = None
        self._consumers: dict[str, AIOKafkaConsumer] = {}
        self._consumer_lock = asyncio.Lock()
        self._started = False

        # Per partition: offsets pulled but not acked, highest settled offset + 1,
        # and the last committed offset
        self._in_flight: dict[TopicPartition, set[int]] = {}
        self._settled: dict[TopicPartition, int] = {}
        self._committed: dict[TopicPartition, int] = {}

    def topic_for(self, queue: str) -> str:
        return f"{self.topic_prefix}.{queue}" if self.topic_prefix else queue

    async def start(self) -> None:
        if self._started:
            logger.warning("Broker already started, ignoring duplicate start call")
            return

        logger.info("Starting Kafka broker", extra={"bootstrap_servers": self.bootstrap_servers})
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            value_serializer=lambda v: v,
            acks=self.producer_config.get("acks", "all"),
            enable_idempotence=self.producer_config.get("enable_idempotence", True),
            request_timeout_ms=self.producer_config.get("request_timeout_ms", 30000),
            retry_backoff_ms=self.producer_config.get("retry_backoff_ms", 1000),
        )
        try:
            await self._producer.start()
        except KafkaError as e:
            self._producer = None
            raise BrokerError(f"Failed to connect to Kafka: {e}", cause=e) from e
        self._started = True
        logger.info("Kafka broker started")

    async def stop(self) -> None:
        logger.info("Stopping Kafka broker")
        consumers, self._consumers = self._consumers, {}
        self._in_flight.clear()
        self._settled.clear()
        self._committed.clear()
        for queue, consumer in consumers.items():
            try:
                await consumer.stop()
            except KafkaError:
                logger.error("Error stopping consumer", extra={"queue": queue}, exc_info=True)

        if self._producer is not None:
            try:
                await self._producer.flush()
                await self._producer.stop()
            except KafkaError:
                logger.error("Error stopping producer", exc_info=True)
            finally:
                self._producer = None
        self._started = False

    def _encode(self, job: Job, delay_seconds: float) -> bytes:
        payload = job.to_dict()
        payload["not_before"] = self._clock() + delay_seconds if delay_seconds > 0 else None
        return json.dumps(payload, default=json_serializer).encode("utf-8")

    async def publish(self, job: Job, delay_seconds: float = 0.0) -> None:
        if not self._started or self._producer is None:
            raise BrokerError("Broker not started. Call start() first.")
        topic = self.topic_for(job.queue)
        try:
            await self._producer.send_and_wait(
                topic,
                key=job.id.encode("utf-8"),
                value=self._encode(job, delay_seconds),
            )
        except KafkaError as e:
            logger.error(
                "Failed to publish job",
                extra={"topic": topic, "job_id": job.id, "error": str(e)},
                exc_info=True,
            )
            raise BrokerError(f"Failed to publish job {job.id}: {e}", cause=e) from e

    async def _consumer_for(self, queue: str) -> AIOKafkaConsumer:
        async with self._consumer_lock:
            consumer = self._consumers.get(queue)
            if consumer is not None:
                return consumer
            consumer = AIOKafkaConsumer(
                self.topic_for(queue),
                bootstrap_servers=self.bootstrap_servers,
                group_id=f"{self.group_prefix}-{queue}",
                client_id=self.client_id,
                enable_auto_commit=False,
                auto_offset_reset=self.consumer_config.get("auto_offset_reset", "earliest"),
                max_poll_records=self.consumer_config.get("max_poll_records", 1),
                max_poll_interval_ms=self.consumer_config.get("max_poll_interval_ms", 300000),
                session_timeout_ms=self.consumer_config.get("session_timeout_ms", 30000),
            )
            try:
                await consumer.start()
            except KafkaError as e:
                raise BrokerError(f"Failed to start consumer for {queue}: {e}", cause=e) from e
            self._consumers[queue] = consumer
            logger.info("Kafka consumer started", extra={"queue": queue})
            return consumer

    def _track(self, tp: TopicPartition, offset: int) -> None:
        # The first offset seen on a partition is where the group already stands
        self._committed.setdefault(tp, offset)
        self._in_flight.setdefault(tp, set()).add(offset)

    def _settle(self, tp: TopicPartition, offset: int) -> int | None:
        """Mark ``offset`` done; returns the offset safe to commit, if it advanced."""
        in_flight = self._in_flight.setdefault(tp, set())
        in_flight.discard(offset)
        self._settled[tp] = max(self._settled.get(tp, 0), offset + 1)
        target = min(in_flight) if in_flight else self._settled[tp]
        if target <= self._committed.get(tp, -1):
            return None
        return target

    async def _commit(self, consumer: AIOKafkaConsumer, tp: TopicPartition, offset: int) -> None:
        await consumer.commit({tp: offset})
        self._committed[tp] = offset

    async def pull(self, queue: str, timeout_seconds: float = 1.0) -> Job | None:
        consumer = await self._consumer_for(queue)
        try:
            batch = await consumer.getmany(
                timeout_ms=int(timeout_seconds * 1000), max_records=1
            )
        except KafkaError as e:
            raise BrokerError(f"Failed to pull from {queue}: {e}", cause=e) from e

        for tp, messages in batch.items():
            tp = TopicPartition(tp.topic, tp.partition)
            for message in messages:
                self._track(tp, message.offset)
                try:
                    payload = json.loads(message.value)
                    job = Job.from_dict(payload)
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.error(
                        "Dropping undecodable job message",
                        extra={"queue": queue, "offset": message.offset, "error": str(e)},
                    )
                    target = self._settle(tp, message.offset)
                    if target is not None:
                        await self._commit(consumer, tp, target)
                    return None

                job.receipt = (tp, message.offset)
                not_before = payload.get("not_before")
                if not_before:
                    wait = not_before - self._clock()
                    if wait > 0:
                        await asyncio.sleep(wait)
                return job
        return None

    async def ack(self, job: Job) -> None:
        if job.receipt is None:
            return
        tp, offset = job.receipt
        consumer = self._consumers.get(job.queue)
        if consumer is None:
            return
        target = self._settle(tp, offset)
        if target is None:
            # An earlier job on this partition is still running
            return
        try:
            await self._commit(consumer, tp, target)
        except KafkaError as e:
            logger.warning(
                "Offset commit failed; job may be redelivered",
                extra={"queue": job.queue, "job_id": job.id, "error": str(e)},
            )


__all__ = ["KafkaBroker"]
