"""
Backfill controller.

State machine over the persisted BackfillState:

    idle ──start──> running ──pause──> paused ──resume/start──> running
                       │
                       ├── offset >= total ──> completed
                       └── catalog failure ──> error     (reset -> idle)

Each tick queues one page of package ids as BulkSyncJobs and only then
persists the advanced offset, so a crash mid-tick replays at most one page.
Replayed pages produce the same bulk job ids and are dropped by the queue's
dedup window. Job ids carry the run id set by ``start``, so a new run after
``reset`` is never mistaken for a replay.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from core.errors import PermanentError, PipelineError
from core.logging import log_exception
from registry_sync.backfill.catalog import CatalogClient
from registry_sync.backfill.state import BackfillState, BackfillStatus, BackfillStore
from registry_sync.metrics import update_backfill_progress
from registry_sync.queue.queue import JobQueue
from registry_sync.sync.producer import queue_bulk_sync

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500
DEFAULT_TICK_SECONDS = 5.0
BACKFILL_PHASE = 1


class InvalidTransitionError(PermanentError):
    """A backfill command is not allowed from the current status."""


def format_duration(seconds: float | None) -> str:
    """
    Example:
        >>> format_duration(3725)
        '1h 2m'
    """
    if not seconds or seconds < 0:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


class BackfillController:
    """
    Usage:
        controller = BackfillController(JsonBackfillStore(dir), queue, CatalogClient())
        await controller.start()
        await controller.run(stop_event)
    """

    def __init__(
        self,
        store: BackfillStore,
        queue: JobQueue,
        catalog: CatalogClient,
        page_size: int = DEFAULT_PAGE_SIZE,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.queue = queue
        self.catalog = catalog
        self.page_size = page_size
        self.tick_seconds = tick_seconds
        self._clock = clock
        # Package list cached per run, keyed by the run's started_at
        self._packages: list[str] | None = None
        self._packages_run: int | None = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _save(self, state: BackfillState) -> BackfillState:
        state.updated_at = self._now_ms()
        await self.store.set_state(state)
        update_backfill_progress(state.offset, state.total)
        return state

    async def get_state(self) -> BackfillState:
        return await self.store.get_state()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> BackfillState:
        """
        Start a new run from idle, or continue a paused one from its offset.

        The catalog is fetched by the first tick, not here.
        """
        state = await self.store.get_state()
        if state.status == BackfillStatus.PAUSED:
            return await self.resume()
        if state.status != BackfillStatus.IDLE:
            raise InvalidTransitionError(
                f'Cannot start: current status is "{state.status.value}"'
                + ("" if state.status == BackfillStatus.RUNNING else ", reset first")
            )

        await self.store.delete_packages()
        self._packages = None
        now = self._now_ms()
        new_state = BackfillState(status=BackfillStatus.RUNNING, started_at=now, run_id=now)
        logger.info("Backfill started")
        return await self._save(new_state)

    async def pause(self) -> BackfillState:
        state = await self.store.get_state()
        if state.status != BackfillStatus.RUNNING:
            raise InvalidTransitionError(f'Cannot pause: current status is "{state.status.value}"')
        state.status = BackfillStatus.PAUSED
        logger.info("Backfill paused", extra={"offset": state.offset, "total": state.total})
        return await self._save(state)

    async def resume(self) -> BackfillState:
        state = await self.store.get_state()
        if state.status != BackfillStatus.PAUSED:
            raise InvalidTransitionError(f'Cannot resume: current status is "{state.status.value}"')
        state.status = BackfillStatus.RUNNING
        logger.info("Backfill resumed", extra={"offset": state.offset, "total": state.total})
        return await self._save(state)

    async def reset(self) -> BackfillState:
        await self.store.delete_packages()
        self._packages = None
        logger.info("Backfill reset to idle")
        return await self._save(BackfillState())

    async def status(self) -> dict[str, Any]:
        """Persisted state plus progress, elapsed time, ETA and remaining count."""
        state = await self.store.get_state()
        now = self._now_ms()
        progress = (state.offset / state.total * 100) if state.total > 0 else 0.0
        elapsed = (now - state.started_at) / 1000 if state.started_at else 0
        remaining = max(0, state.total - state.offset)
        eta = remaining / state.rate if state.rate > 0 else 0
        return {
            **state.to_dict(),
            "progress": f"{progress:.2f}%",
            "elapsed": format_duration(elapsed),
            "eta": format_duration(eta),
            "remaining": remaining,
        }

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def _load_packages(self, state: BackfillState) -> list[str]:
        if self._packages is None or self._packages_run != state.started_at:
            self._packages = await self.store.get_packages()
            self._packages_run = state.started_at
        return self._packages

    async def _initialize(self, state: BackfillState) -> BackfillState:
        logger.info("Initializing full registry sync")
        try:
            packages = await self.catalog.get_all_packages()
        except PipelineError as e:
            log_exception(logger, e, "Backfill catalog fetch failed")
            state.status = BackfillStatus.ERROR
            state.error = str(e)
            return await self._save(state)

        await self.store.set_packages(packages)
        state.total = len(packages)
        state.offset = 0
        state.synced = 0
        state.failed = 0
        state.rate = 0.0
        state.error = None
        state.started_at = self._now_ms()
        self._packages = packages
        self._packages_run = state.started_at
        logger.info("Backfill initialized: %s packages to sync", f"{len(packages):,}")
        if not packages:
            logger.warning("Backfill catalog is empty")
            state.status = BackfillStatus.COMPLETED
        return await self._save(state)

    async def tick(self) -> BackfillState:
        """
        Advance a running backfill by one page.

        Broker errors propagate without persisting, leaving the offset at the
        start of the page.
        """
        state = await self.store.get_state()
        if state.status != BackfillStatus.RUNNING:
            return state

        if state.total == 0:
            state = await self._initialize(state)
            if state.status != BackfillStatus.RUNNING:
                return state

        if state.offset >= state.total:
            logger.info("Backfill completed: all packages queued")
            state.status = BackfillStatus.COMPLETED
            return await self._save(state)

        packages = await self._load_packages(state)
        page = packages[state.offset : state.offset + self.page_size]
        if not page:
            logger.info("Backfill completed: package list exhausted")
            state.status = BackfillStatus.COMPLETED
            return await self._save(state)

        await queue_bulk_sync(
            self.queue,
            page,
            phase=BACKFILL_PHASE,
            start_offset=state.offset,
            run_id=state.run_id or None,
        )

        # pause and reset may be issued by another process while the page is queued
        current = await self.store.get_state()
        if current.run_id != state.run_id or current.status not in (
            BackfillStatus.RUNNING,
            BackfillStatus.PAUSED,
        ):
            logger.info(
                "Backfill run changed during tick, dropping progress",
                extra={"status": current.status.value, "offset": state.offset},
            )
            return current
        if current.status == BackfillStatus.PAUSED:
            state.status = BackfillStatus.PAUSED

        state.offset += len(page)
        state.synced += len(page)
        elapsed = (self._now_ms() - state.started_at) / 1000 if state.started_at else 0
        state.rate = round(state.synced / elapsed, 2) if elapsed > 0 else 0.0
        await self._save(state)

        remaining = state.total - state.offset
        logger.info(
            "Backfill progress: %s/%s (%.2f%%) | Rate: %.1f/s | ETA: %s",
            f"{state.offset:,}",
            f"{state.total:,}",
            state.offset / state.total * 100,
            state.rate,
            format_duration(remaining / state.rate if state.rate > 0 else 0),
            extra={"offset": state.offset, "total": state.total},
        )
        return state

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every ``tick_seconds`` until stopped; idle or paused ticks are no-ops."""
        logger.info("Backfill controller running", extra={"tick_seconds": self.tick_seconds})
        while not stop_event.is_set():
            try:
                await self.tick()
            except PipelineError as e:
                log_exception(logger, e, "Backfill tick failed", level=logging.WARNING)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.tick_seconds)
            except TimeoutError:
                pass


__all__ = [
    "BACKFILL_PHASE",
    "BackfillController",
    "InvalidTransitionError",
    "format_duration",
]
