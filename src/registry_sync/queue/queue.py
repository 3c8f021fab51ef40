"""Producer-side job queue with identity deduplication."""

import asyncio
import logging
import uuid
from typing import Any

from registry_sync.metrics import jobs_deduplicated_counter, jobs_enqueued_counter
from registry_sync.queue.base import Broker, Job, JobOptions
from registry_sync.queue.dedup import DedupStore

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Adds jobs to named topics.

    A caller-supplied ``job_id`` seen within the topic's ``dedup_ttl_seconds``
    makes ``add`` a silent no-op that returns False. Jobs without an id get a
    random one and are never deduplicated.

    Usage:
        queue = JobQueue(broker, dedup_store, options={"sync": JobOptions(...)})
        accepted = await queue.add("sync", job.model_dump(), job_id=job.job_id)
    """

    def __init__(
        self,
        broker: Broker,
        dedup_store: DedupStore | None = None,
        options: dict[str, JobOptions] | None = None,
    ):
        self.broker = broker
        self.dedup_store = dedup_store
        self._options = options or {}
        self._lock = asyncio.Lock()

    def options_for(self, name: str) -> JobOptions:
        return self._options.get(name) or JobOptions()

    async def add(self, name: str, data: dict[str, Any], job_id: str | None = None) -> bool:
        """
        Enqueue one job.

        Returns:
            True if the job was published, False if it was a duplicate
        """
        if job_id is None:
            await self.broker.publish(Job(id=str(uuid.uuid4()), queue=name, data=data))
            jobs_enqueued_counter.labels(queue=name).inc()
            return True

        options = self.options_for(name)
        async with self._lock:
            if self.dedup_store is not None:
                is_duplicate, _ = await self.dedup_store.check_duplicate(
                    name, job_id, options.dedup_ttl_seconds
                )
                if is_duplicate:
                    jobs_deduplicated_counter.labels(queue=name).inc()
                    logger.debug("Duplicate job ignored", extra={"queue": name, "job_id": job_id})
                    return False

            await self.broker.publish(Job(id=job_id, queue=name, data=data))
            if self.dedup_store is not None:
                await self.dedup_store.mark_processed(name, job_id, {})

        jobs_enqueued_counter.labels(queue=name).inc()
        return True

    async def add_bulk(self, name: str, jobs: list[tuple[dict[str, Any], str | None]]) -> int:
        """Enqueue ``(data, job_id)`` pairs in order; returns how many were accepted."""
        accepted = 0
        for data, job_id in jobs:
            if await self.add(name, data, job_id=job_id):
                accepted += 1
        return accepted


__all__ = ["JobQueue"]
