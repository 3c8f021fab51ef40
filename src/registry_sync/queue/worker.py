"""
Consumer-side queue worker.

``concurrency`` tasks pull from one topic. A shared sliding-window limiter
gates job starts, so the rolling rate limit holds regardless of concurrency.
A handler that raises is republished with the topic's backoff delay (or the
upstream's Retry-After, when longer) until ``attempts`` is exhausted; then
the job is dead-lettered: logged at ERROR and counted, never silently
dropped. Only a payload that fails validation, or a permanent error on a
topic with ``fail_fast`` set, is dead-lettered before its last attempt.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from core.errors import classify_exception
from core.logging.context import set_log_context
from core.logging.utilities import log_exception
from core.resilience.rate_limiter import SlidingWindowRateLimiter
from core.types import ErrorCategory
from registry_sync.metrics import (
    job_duration_seconds,
    jobs_processed_counter,
    record_dead_job,
    record_job_failed,
)
from registry_sync.queue.base import Broker, Job, JobOptions

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]

OUTCOME_COMPLETED = "completed"
OUTCOME_RETRY = "retry"
OUTCOME_DEAD = "dead"


class QueueWorker:
    """
    Runs ``handler`` for every job on ``queue_name``.

    Usage:
        worker = QueueWorker("sync", handle_sync_job, broker, options)
        await worker.start()   # returns after stop()
    """

    def __init__(
        self,
        queue_name: str,
        handler: JobHandler,
        broker: Broker,
        options: JobOptions | None = None,
        worker_id: str | None = None,
        limiter: SlidingWindowRateLimiter | None = None,
        poll_timeout_seconds: float = 1.0,
        on_heartbeat: Callable[[], None] | None = None,
    ):
        self.queue_name = queue_name
        self.handler = handler
        self.broker = broker
        self.options = options or JobOptions()
        self.worker_id = worker_id or queue_name
        self.poll_timeout_seconds = poll_timeout_seconds
        self._on_heartbeat = on_heartbeat

        if limiter is None and self.options.limiter is not None:
            limiter = SlidingWindowRateLimiter(
                max_calls=self.options.limiter.max_jobs,
                duration_seconds=self.options.limiter.duration_seconds,
                name=f"{queue_name}-limiter",
            )
        self.limiter = limiter

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()

        self.jobs_completed = 0
        self.jobs_failed = 0
        self.jobs_retried = 0
        self.jobs_dead = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self, cycle: int = 0) -> dict[str, Any]:
        """Cumulative counts in PeriodicStatsLogger form."""
        return {
            "records_succeeded": self.jobs_completed,
            "records_failed": self.jobs_dead,
            "records_skipped": 0,
            "records_deduplicated": 0,
            "jobs_retried": self.jobs_retried,
            "queue": self.queue_name,
        }

    async def start(self) -> None:
        if self._running:
            logger.warning("Worker already running, ignoring duplicate start call")
            return

        self._running = True
        self._stop_event.clear()
        logger.info(
            "Queue worker started",
            extra={
                "worker_id": self.worker_id,
                "queue": self.queue_name,
                "concurrency": self.options.concurrency,
                "max_attempts": self.options.attempts,
            },
        )
        self._tasks = [
            asyncio.create_task(self._run_loop(i), name=f"{self.worker_id}-slot-{i}")
            for i in range(max(1, self.options.concurrency))
        ]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            self._running = False
            self._tasks = []

    async def stop(self) -> None:
        """Stop pulling; in-flight jobs finish before the slots exit."""
        if not self._running:
            return
        logger.info("Stopping queue worker", extra={"queue": self.queue_name})
        self._stop_event.set()

    async def _run_loop(self, slot: int) -> None:
        while not self._stop_event.is_set():
            job = await self.broker.pull(self.queue_name, self.poll_timeout_seconds)
            if self._on_heartbeat:
                self._on_heartbeat()
            if job is None:
                continue
            if self.limiter is not None:
                await self.limiter.acquire()
            await self.process_job(job)

    async def process_job(self, job: Job) -> str:
        """Run the handler once and settle the job: complete, reschedule or dead-letter."""
        attempt = job.attempt + 1
        set_log_context(job_id=job.id, worker_id=self.worker_id)
        start = time.perf_counter()
        try:
            await self.handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self._handle_failure(job, attempt, e)
        else:
            self.jobs_completed += 1
            jobs_processed_counter.labels(queue=self.queue_name).inc()
            await self.broker.ack(job)
            logger.debug(
                "Job completed",
                extra={"queue": self.queue_name, "job_id": job.id, "attempt": attempt},
            )
            return OUTCOME_COMPLETED
        finally:
            job_duration_seconds.labels(queue=self.queue_name).observe(time.perf_counter() - start)
            set_log_context(job_id="", package="")

    def retry_delay(self, attempt: int, error: Exception) -> float:
        """Backoff delay for ``attempt``, stretched to the error's retry_after if longer."""
        delay = self.options.backoff.get_delay(attempt)
        retry_after = getattr(error, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after > delay:
            delay = min(float(retry_after), self.options.backoff.max_delay_seconds)
        return delay

    async def _handle_failure(self, job: Job, attempt: int, error: Exception) -> str:
        category = classify_exception(error)
        self.jobs_failed += 1
        record_job_failed(self.queue_name, category.value)

        exhausted = attempt >= self.options.attempts
        # The payload never changes between attempts
        invalid_payload = isinstance(error, ValidationError)
        fail_fast = self.options.fail_fast and category == ErrorCategory.PERMANENT
        if exhausted or invalid_payload or fail_fast:
            self.jobs_dead += 1
            record_dead_job(self.queue_name)
            log_exception(
                logger,
                error,
                "Job dead-lettered",
                queue=self.queue_name,
                job_id=job.id,
                attempt=attempt,
                max_attempts=self.options.attempts,
                error_category=category.value,
                job_data=job.data,
            )
            await self.broker.ack(job)
            return OUTCOME_DEAD

        delay = self.retry_delay(attempt, error)
        self.jobs_retried += 1
        log_exception(
            logger,
            error,
            "Job failed, will retry",
            level=logging.WARNING,
            include_traceback=False,
            queue=self.queue_name,
            job_id=job.id,
            attempt=attempt,
            max_attempts=self.options.attempts,
            delay_seconds=round(delay, 2),
            error_category=category.value,
        )
        retry = Job(
            id=job.id,
            queue=job.queue,
            data=job.data,
            attempt=attempt,
            created_at=job.created_at,
        )
        await self.broker.publish(retry, delay_seconds=delay)
        await self.broker.ack(job)
        return OUTCOME_RETRY


__all__ = ["JobHandler", "QueueWorker", "OUTCOME_COMPLETED", "OUTCOME_DEAD", "OUTCOME_RETRY"]
