"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

_COUNT_KEYS = ("succeeded", "failed", "skipped", "deduplicated")


class PeriodicStatsLogger:
    """
    Logs worker statistics every ``interval_seconds`` with per-cycle deltas.

    Workers provide a callback returning cumulative counts as extra fields
    (``records_succeeded``, ``records_failed``, ``records_skipped``,
    ``records_deduplicated`` plus anything worker-specific).
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[int], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] = {}

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @staticmethod
    def _counts(extra: dict[str, Any]) -> dict[str, int]:
        return {key: int(extra.get(f"records_{key}", 0)) for key in _COUNT_KEYS}

    def log_cycle(self) -> str:
        """Emit one cycle line and return the formatted message."""
        extra = self.get_stats(self._cycle_count)
        current = self._counts(extra)
        deltas = {key: current[key] - self._previous.get(key, 0) for key in current}

        msg = format_cycle_output(
            cycle_count=self._cycle_count,
            succeeded=current["succeeded"],
            failed=current["failed"],
            skipped=current["skipped"],
            deduplicated=current["deduplicated"],
            since_last=deltas if self._cycle_count > 0 else None,
            interval_seconds=self.interval_seconds,
        )
        self._previous = current

        logger.info(
            msg,
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": self._cycle_count,
                **extra,
            },
        )
        self._cycle_count += 1
        return msg

    async def _run(self) -> None:
        self.log_cycle()
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.log_cycle()
