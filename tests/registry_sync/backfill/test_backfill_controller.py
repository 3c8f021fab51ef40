"""
Tests for the resumable backfill state machine.

A restarted controller continues from the persisted offset, replayed pages
within one run are deduplicated by bulk job id, and commands enforce the
allowed transitions.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import BrokerError
from registry_sync.backfill.controller import (
    BackfillController,
    InvalidTransitionError,
    format_duration,
)
from registry_sync.backfill.state import (
    BackfillState,
    BackfillStatus,
    JsonBackfillStore,
    MemoryBackfillStore,
)
from registry_sync.clients.http import ApiError
from registry_sync.queue.dedup import MemoryDedupStore
from registry_sync.queue.memory import InMemoryBroker
from registry_sync.queue.queue import JobQueue
from registry_sync.sync.producer import BULK_SYNC_QUEUE

START_S = 1_700_000_000.0
START_MS = int(START_S * 1000)


class FakeClock:
    def __init__(self, now=START_S):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def queue(broker):
    return JobQueue(broker, MemoryDedupStore())


@pytest.fixture
def catalog():
    fake = MagicMock()
    fake.get_all_packages = AsyncMock(return_value=[f"pkg-{i}" for i in range(1200)])
    return fake


@pytest.fixture
def store():
    return MemoryBackfillStore()


@pytest.fixture
def controller(store, queue, catalog, clock):
    return BackfillController(store, queue, catalog, page_size=500, clock=clock)


class TestCommands:
    @pytest.mark.asyncio
    async def test_start_from_idle(self, controller, catalog):
        state = await controller.start()

        assert state.status == BackfillStatus.RUNNING
        assert state.started_at == START_MS
        assert state.run_id == START_MS
        assert state.total == 0
        catalog.get_all_packages.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_while_running_is_rejected(self, controller):
        await controller.start()

        with pytest.raises(InvalidTransitionError, match='"running"'):
            await controller.start()

    @pytest.mark.asyncio
    async def test_start_after_completion_requires_reset(self, controller, store):
        await store.set_state(BackfillState(status=BackfillStatus.COMPLETED))

        with pytest.raises(InvalidTransitionError, match="reset first"):
            await controller.start()

    @pytest.mark.asyncio
    async def test_pause_and_resume_keep_offset(self, controller, store):
        await store.set_state(BackfillState(status=BackfillStatus.RUNNING, offset=300, total=1000))

        paused = await controller.pause()
        resumed = await controller.resume()

        assert paused.status == BackfillStatus.PAUSED
        assert resumed.status == BackfillStatus.RUNNING
        assert resumed.offset == 300

    @pytest.mark.asyncio
    async def test_start_from_paused_resumes(self, controller, store):
        await store.set_state(BackfillState(status=BackfillStatus.PAUSED, offset=300, total=1000))

        state = await controller.start()

        assert state.status == BackfillStatus.RUNNING
        assert state.offset == 300

    @pytest.mark.asyncio
    async def test_pause_requires_running(self, controller):
        with pytest.raises(InvalidTransitionError):
            await controller.pause()

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, controller):
        with pytest.raises(InvalidTransitionError):
            await controller.resume()

    @pytest.mark.asyncio
    async def test_reset_clears_state_and_packages(self, controller, store):
        await store.set_packages(["a", "b"])
        await store.set_state(BackfillState(status=BackfillStatus.ERROR, error="boom"))

        state = await controller.reset()

        assert state.status == BackfillStatus.IDLE
        assert state.error is None
        assert await store.get_packages() == []

    @pytest.mark.asyncio
    async def test_status_report(self, controller, store, clock):
        await store.set_state(
            BackfillState(
                status=BackfillStatus.RUNNING,
                offset=2500,
                total=10000,
                synced=2500,
                started_at=int(START_S * 1000),
                rate=50.0,
            )
        )
        clock.now += 50

        report = await controller.status()

        assert report["status"] == "running"
        assert report["progress"] == "25.00%"
        assert report["remaining"] == 7500
        assert report["elapsed"] == "50s"
        assert report["eta"] == "2m 30s"


class TestTick:
    @pytest.mark.asyncio
    async def test_idle_tick_is_a_no_op(self, controller, catalog, broker):
        state = await controller.tick()

        assert state.status == BackfillStatus.IDLE
        catalog.get_all_packages.assert_not_awaited()
        assert broker.pending(BULK_SYNC_QUEUE) == 0

    @pytest.mark.asyncio
    async def test_first_tick_fetches_catalog_and_queues_first_page(
        self, controller, store, broker
    ):
        await controller.start()

        state = await controller.tick()

        assert state.total == 1200
        assert state.offset == 500
        assert len(await store.get_packages()) == 1200
        assert [j.id for j in broker.peek(BULK_SYNC_QUEUE)] == [
            f"bulk:1:{START_MS}:{i}" for i in range(10)
        ]

    @pytest.mark.asyncio
    async def test_runs_to_completion(self, controller, broker):
        await controller.start()

        for _ in range(4):
            state = await controller.tick()

        assert state.status == BackfillStatus.COMPLETED
        assert state.offset == 1200
        assert broker.pending(BULK_SYNC_QUEUE) == 24

    @pytest.mark.asyncio
    async def test_resumes_from_persisted_offset(self, tmp_path, queue, catalog, clock, broker):
        packages = [f"pkg-{i}" for i in range(10000)]
        first_store = JsonBackfillStore(tmp_path)
        await first_store.set_packages(packages)
        await first_store.set_state(
            BackfillState(
                status=BackfillStatus.RUNNING,
                offset=4000,
                total=10000,
                synced=4000,
                started_at=int(START_S * 1000),
            )
        )

        # A fresh controller, as after a process restart
        controller = BackfillController(JsonBackfillStore(tmp_path), queue, catalog, clock=clock)
        clock.now += 100
        state = await controller.tick()

        assert state.offset == 4500
        assert state.rate == 45.0
        catalog.get_all_packages.assert_not_awaited()
        jobs = broker.peek(BULK_SYNC_QUEUE)
        assert [j.id for j in jobs] == [f"bulk:1:{i}" for i in range(80, 90)]
        assert jobs[0].data["package_ids"][0] == "pkg-4000"
        assert (await JsonBackfillStore(tmp_path).get_state()).offset == 4500

    @pytest.mark.asyncio
    async def test_replayed_page_is_deduplicated(self, store, queue, catalog, clock, broker):
        await store.set_packages([f"pkg-{i}" for i in range(1000)])
        running = BackfillState(
            status=BackfillStatus.RUNNING, offset=0, total=1000, started_at=int(START_S * 1000)
        )
        await store.set_state(running)
        controller = BackfillController(store, queue, catalog, clock=clock)

        await controller.tick()
        # Crash before the offset write: the same page is ticked again
        await store.set_state(running)
        await controller.tick()

        assert broker.pending(BULK_SYNC_QUEUE) == 10

    @pytest.mark.asyncio
    async def test_catalog_failure_sets_error(self, controller, catalog):
        catalog.get_all_packages = AsyncMock(side_effect=ApiError("Server error (502)"))
        await controller.start()

        state = await controller.tick()

        assert state.status == BackfillStatus.ERROR
        assert "502" in state.error

    @pytest.mark.asyncio
    async def test_empty_catalog_completes(self, controller, catalog):
        catalog.get_all_packages = AsyncMock(return_value=[])
        await controller.start()

        state = await controller.tick()

        assert state.status == BackfillStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_broker_error_leaves_offset_unchanged(self, store, catalog, clock):
        queue = MagicMock()
        queue.add_bulk = AsyncMock(side_effect=BrokerError("broker down"))
        await store.set_packages(["a", "b"])
        await store.set_state(BackfillState(status=BackfillStatus.RUNNING, total=2))
        controller = BackfillController(store, queue, catalog, clock=clock)

        with pytest.raises(BrokerError):
            await controller.tick()

        assert (await store.get_state()).offset == 0

    @pytest.mark.asyncio
    async def test_paused_run_does_not_advance(self, controller, store, broker):
        await controller.start()
        await controller.tick()
        await controller.pause()

        state = await controller.tick()

        assert state.status == BackfillStatus.PAUSED
        assert state.offset == 500
        assert broker.pending(BULK_SYNC_QUEUE) == 10

    @pytest.mark.asyncio
    async def test_rerun_after_reset_queues_every_chunk(self, controller, catalog, clock, broker):
        catalog.get_all_packages = AsyncMock(return_value=[f"pkg-{i}" for i in range(100)])
        await controller.start()
        await controller.tick()
        assert broker.pending(BULK_SYNC_QUEUE) == 2

        await controller.reset()
        clock.now += 3600
        await controller.start()
        state = await controller.tick()

        assert broker.pending(BULK_SYNC_QUEUE) == 4
        assert state.synced == 100
        rerun_ids = [j.id for j in broker.peek(BULK_SYNC_QUEUE)][2:]
        assert rerun_ids == [f"bulk:1:{START_MS + 3_600_000}:{i}" for i in range(2)]

    @pytest.mark.asyncio
    async def test_pause_during_tick_is_kept(self, store, catalog, clock):
        await store.set_packages([f"pkg-{i}" for i in range(1000)])
        await store.set_state(
            BackfillState(
                status=BackfillStatus.RUNNING, total=1000, started_at=START_MS, run_id=START_MS
            )
        )
        other = BackfillController(store, MagicMock(), catalog, clock=clock)

        async def pause_while_queueing(queue_name, items):
            await other.pause()
            return len(items)

        queue = MagicMock()
        queue.add_bulk = AsyncMock(side_effect=pause_while_queueing)
        controller = BackfillController(store, queue, catalog, clock=clock)

        state = await controller.tick()

        persisted = await store.get_state()
        assert state.status == BackfillStatus.PAUSED
        assert persisted.status == BackfillStatus.PAUSED
        assert persisted.offset == 500

    @pytest.mark.asyncio
    async def test_reset_during_tick_drops_progress(self, store, catalog, clock):
        await store.set_packages([f"pkg-{i}" for i in range(1000)])
        await store.set_state(
            BackfillState(
                status=BackfillStatus.RUNNING, total=1000, started_at=START_MS, run_id=START_MS
            )
        )
        other = BackfillController(store, MagicMock(), catalog, clock=clock)

        async def reset_while_queueing(queue_name, items):
            await other.reset()
            return len(items)

        queue = MagicMock()
        queue.add_bulk = AsyncMock(side_effect=reset_while_queueing)
        controller = BackfillController(store, queue, catalog, clock=clock)

        state = await controller.tick()

        assert state.status == BackfillStatus.IDLE
        assert (await store.get_state()).offset == 0

    @pytest.mark.asyncio
    async def test_run_stops_on_event(self, controller):
        controller.tick_seconds = 0.01
        stop_event = asyncio.Event()
        stop_event.set()

        await asyncio.wait_for(controller.run(stop_event), timeout=1)


class TestFormatDuration:
    @pytest.mark.parametrize(
        "seconds,expected",
        [(None, "N/A"), (0, "N/A"), (45, "45s"), (150, "2m 30s"), (3725, "1h 2m")],
    )
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestBackfillStores:
    @pytest.mark.asyncio
    async def test_json_store_round_trip(self, tmp_path):
        store = JsonBackfillStore(tmp_path)
        await store.set_state(BackfillState(status=BackfillStatus.PAUSED, offset=7, total=9))

        state = await JsonBackfillStore(tmp_path).get_state()

        assert state.status == BackfillStatus.PAUSED
        assert (state.offset, state.total) == (7, 9)
        assert (tmp_path / "backfill_state.json").exists()

    @pytest.mark.asyncio
    async def test_missing_state_is_idle(self, tmp_path):
        assert (await JsonBackfillStore(tmp_path).get_state()).status == BackfillStatus.IDLE

    @pytest.mark.asyncio
    async def test_delete_packages(self, tmp_path):
        store = JsonBackfillStore(tmp_path)
        await store.set_packages(["a"])
        await store.delete_packages()

        assert await store.get_packages() == []

    def test_from_dict_ignores_unknown_keys(self):
        state = BackfillState.from_dict({"status": "running", "offset": 3, "legacy": True})

        assert state.status == BackfillStatus.RUNNING
        assert state.offset == 3
