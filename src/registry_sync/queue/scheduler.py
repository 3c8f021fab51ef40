"""
Repeatable (cron) job scheduler.

Holds explicit ``(pattern, next_fire)`` entries and evaluates them against
an injectable clock, so the schedule is visible to tests. Every fire is
enqueued with the identity ``repeat:{name}:{pattern}:{fire_ms}``; with a
persistent dedup store this makes overlapping or restarted schedulers
harmless.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from croniter import croniter

from registry_sync.queue.queue import JobQueue

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def repeat_job_id(name: str, pattern: str, fire_time: datetime) -> str:
    return f"repeat:{name}:{pattern}:{int(fire_time.timestamp() * 1000)}"


@dataclass
class RepeatableEntry:
    name: str
    queue: str
    pattern: str
    data: dict[str, Any] = field(default_factory=dict)
    next_fire: datetime | None = None

    def advance(self, after: datetime) -> datetime:
        self.next_fire = croniter(self.pattern, after).get_next(datetime)
        return self.next_fire


class RepeatableScheduler:
    """
    Usage:
        scheduler = RepeatableScheduler(queue)
        scheduler.clear()
        scheduler.register("daily", "digest", "0 9 * * *", {"period": "daily"})
        await scheduler.run(stop_event)
    """

    def __init__(
        self,
        queue: JobQueue,
        clock: Callable[[], datetime] = _utc_now,
        tick_seconds: float = 1.0,
    ):
        self.queue = queue
        self._clock = clock
        self.tick_seconds = tick_seconds
        self._entries: dict[str, RepeatableEntry] = {}

    @property
    def entries(self) -> list[RepeatableEntry]:
        return list(self._entries.values())

    def clear(self) -> int:
        """Drop every registration; returns how many were removed."""
        removed = len(self._entries)
        self._entries.clear()
        if removed:
            logger.info("Cleared repeatable jobs", extra={"removed_count": removed})
        return removed

    def register(
        self,
        name: str,
        queue: str,
        pattern: str,
        data: dict[str, Any] | None = None,
    ) -> RepeatableEntry:
        """Register (or replace) a named schedule; the first fire is strictly after now."""
        if not croniter.is_valid(pattern):
            raise ValueError(f"Invalid cron pattern for {name!r}: {pattern!r}")
        entry = RepeatableEntry(name=name, queue=queue, pattern=pattern, data=dict(data or {}))
        entry.advance(self._clock())
        self._entries[name] = entry
        logger.info(
            "Registered repeatable job",
            extra={
                "job_name": name,
                "queue": queue,
                "pattern": pattern,
                "next_fire": entry.next_fire.isoformat(),
            },
        )
        return entry

    async def tick(self, now: datetime | None = None) -> list[str]:
        """
        Enqueue every entry that is due at ``now``.

        A schedule that missed several fires (process was down) fires once
        and moves on to its next future time.

        Returns:
            Job ids that were accepted by the queue
        """
        now = now or self._clock()
        enqueued = []
        for entry in self._entries.values():
            if entry.next_fire is None or entry.next_fire > now:
                continue
            fire_time = entry.next_fire
            job_id = repeat_job_id(entry.name, entry.pattern, fire_time)
            accepted = await self.queue.add(entry.queue, dict(entry.data), job_id=job_id)
            if accepted:
                enqueued.append(job_id)
            logger.info(
                "Repeatable job fired" if accepted else "Repeatable job already enqueued",
                extra={"job_name": entry.name, "queue": entry.queue, "job_id": job_id},
            )
            entry.advance(now)
        return enqueued

    async def run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.tick_seconds)
            except TimeoutError:
                pass


__all__ = ["RepeatableEntry", "RepeatableScheduler", "repeat_job_id"]
