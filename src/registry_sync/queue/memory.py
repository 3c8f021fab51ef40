"""In-process broker for tests and single-process deployments."""

import asyncio
import heapq
import itertools
import logging
import time
from collections import defaultdict
from collections.abc import Callable

from registry_sync.queue.base import Job

logger = logging.getLogger(__name__)


class InMemoryBroker:
    """
    FIFO per topic with delayed availability.

    Jobs are ordered by the time they become available, then by publish
    order. Nothing survives the process.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._queues: dict[str, list[tuple[float, int, Job]]] = defaultdict(list)
        self._counter = itertools.count()
        self._condition = asyncio.Condition()
        self._in_flight: dict[str, int] = defaultdict(int)
        self._started = False

    async def start(self) -> None:
        self._started = True

    async def stop(self) -> None:
        self._started = False
        async with self._condition:
            self._condition.notify_all()

    async def publish(self, job: Job, delay_seconds: float = 0.0) -> None:
        available_at = self._clock() + max(0.0, delay_seconds)
        async with self._condition:
            heapq.heappush(self._queues[job.queue], (available_at, next(self._counter), job))
            self._condition.notify_all()

    async def pull(self, queue: str, timeout_seconds: float = 1.0) -> Job | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        async with self._condition:
            while True:
                heap = self._queues[queue]
                now = self._clock()
                if heap and heap[0][0] <= now:
                    job = heapq.heappop(heap)[2]
                    self._in_flight[queue] += 1
                    return job

                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait = remaining if not heap else min(remaining, heap[0][0] - now)
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=max(wait, 0.001))
                except TimeoutError:
                    pass

    async def ack(self, job: Job) -> None:
        if self._in_flight[job.queue] > 0:
            self._in_flight[job.queue] -= 1

    def pending(self, queue: str) -> int:
        """Jobs waiting on ``queue``, including delayed ones."""
        return len(self._queues[queue])

    def in_flight(self, queue: str) -> int:
        return self._in_flight[queue]

    def peek(self, queue: str) -> list[Job]:
        """Waiting jobs in availability order (tests and diagnostics)."""
        return [entry[2] for entry in sorted(self._queues[queue])]


__all__ = ["InMemoryBroker"]
