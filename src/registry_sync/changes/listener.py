"""
Change feed listener.

Turns every change into a SyncJob on the ``sync`` topic. Design documents
are dropped first. Changes are grouped in memory (default 100) purely to
amortize logging and cursor writes; each change still becomes its own
dedup-keyed job, so a group is not a commit boundary.
"""

import logging
from dataclasses import dataclass
from typing import Any

from core.logging.periodic_logger import PeriodicStatsLogger
from registry_sync.changes.consumer import ChangeStreamConsumer
from registry_sync.changes.cursor import CursorStore
from registry_sync.metrics import changes_skipped_counter
from registry_sync.queue.queue import JobQueue
from registry_sync.schemas.jobs import ChangeEvent

logger = logging.getLogger(__name__)

SYNC_QUEUE = "sync"
DEFAULT_FLUSH_EVERY = 100


@dataclass
class ListenerStats:
    processed: int = 0
    queued: int = 0
    skipped: int = 0
    deduplicated: int = 0
    last_seq: str | None = None


class ChangeListener:
    """
    Usage:
        listener = ChangeListener(consumer, queue, cursor_store=CursorStore(path))
        await listener.run()
    """

    def __init__(
        self,
        consumer: ChangeStreamConsumer,
        queue: JobQueue,
        cursor_store: CursorStore | None = None,
        flush_every: int = DEFAULT_FLUSH_EVERY,
        stats_interval_seconds: int = 60,
        worker_id: str = "changes",
    ):
        self.consumer = consumer
        self.queue = queue
        self.cursor_store = cursor_store
        self.flush_every = max(1, flush_every)
        self.worker_id = worker_id
        self.stats = ListenerStats()
        self._pending: list[ChangeEvent] = []
        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=stats_interval_seconds,
            get_stats=self._get_cycle_stats,
            stage="changes",
            worker_id=worker_id,
        )

    def _get_cycle_stats(self, cycle: int) -> dict[str, Any]:
        return {
            "records_succeeded": self.stats.queued,
            "records_failed": 0,
            "records_skipped": self.stats.skipped,
            "records_deduplicated": self.stats.deduplicated,
            "last_seq": self.stats.last_seq,
        }

    def resolve_since(self, since: str | None = None) -> str:
        """Explicit cursor, else the stored one, else ``"now"``."""
        if since:
            return since
        if self.cursor_store is not None:
            stored = self.cursor_store.load()
            if stored:
                return stored
        return "now"

    async def handle_change(self, change: ChangeEvent) -> bool:
        """Enqueue one change; returns True if a new SyncJob was published."""
        self.stats.processed += 1
        self.stats.last_seq = change.sequence_token

        if change.is_design_document:
            self.stats.skipped += 1
            changes_skipped_counter.labels(reason="design_document").inc()
            accepted = False
        else:
            job = change.to_sync_job()
            accepted = await self.queue.add(
                SYNC_QUEUE, job.model_dump(mode="json"), job_id=job.job_id
            )
            if accepted:
                self.stats.queued += 1
            else:
                self.stats.deduplicated += 1

        self._pending.append(change)
        if len(self._pending) >= self.flush_every:
            self.flush()
        return accepted

    def flush(self) -> int:
        """Log the current group and persist the cursor; returns the group size."""
        count = len(self._pending)
        if count == 0:
            return 0
        last = self._pending[-1]
        self._pending.clear()

        if self.cursor_store is not None:
            self.cursor_store.save(last.sequence_token)

        logger.info(
            "Queued %d changes (total: %d queued, %d skipped, %d deduped)",
            count,
            self.stats.queued,
            self.stats.skipped,
            self.stats.deduplicated,
            extra={
                "worker_id": self.worker_id,
                "last_seq": last.sequence_token,
                "package": last.package_id,
            },
        )
        return count

    async def run(self, since: str | None = None) -> ListenerStats:
        """Consume until the feed ends; ChangeFeedError propagates to the runner."""
        start_from = self.resolve_since(since)
        logger.info("Starting change listener", extra={"since": start_from})
        self._stats_logger.start()
        try:
            async for change in self.consumer.changes(since=start_from):
                await self.handle_change(change)
        finally:
            self.flush()
            await self._stats_logger.stop()
        return self.stats


__all__ = ["ChangeListener", "ListenerStats", "SYNC_QUEUE"]
