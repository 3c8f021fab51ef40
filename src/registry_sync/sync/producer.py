"""Helpers that put sync work on the queue."""

import logging

from registry_sync.queue.queue import JobQueue
from registry_sync.schemas.jobs import BULK_CHUNK_SIZE, BulkSyncJob, SyncJob

logger = logging.getLogger(__name__)

SYNC_QUEUE = "sync"
BULK_SYNC_QUEUE = "bulk-sync"


async def queue_package_sync(
    queue: JobQueue, name: str, sequence_token: str, deleted: bool = False
) -> bool:
    """Enqueue one package; a repeated (name, sequence token) pair is a no-op."""
    job = SyncJob(package_id=name, sequence_token=sequence_token, deleted=deleted)
    return await queue.add(SYNC_QUEUE, job.model_dump(mode="json"), job_id=job.job_id)


def chunk_bulk_jobs(
    names: list[str],
    phase: int | None = None,
    start_offset: int = 0,
    run_id: int | None = None,
) -> list[BulkSyncJob]:
    """
    Split names into BulkSyncJobs of at most 50 ids.

    Chunk indexes are global: the first chunk of a page starting at
    ``start_offset`` gets index ``start_offset // 50``, so pages of the same
    backfill never produce colliding job ids. A ``run_id`` scopes the ids
    to one backfill run, so a rerun after reset is not deduplicated away.
    """
    base = start_offset // BULK_CHUNK_SIZE
    return [
        BulkSyncJob(
            package_ids=names[i : i + BULK_CHUNK_SIZE],
            phase=phase,
            chunk_index=base + n,
            run_id=run_id,
        )
        for n, i in enumerate(range(0, len(names), BULK_CHUNK_SIZE))
    ]


async def queue_bulk_sync(
    queue: JobQueue,
    names: list[str],
    phase: int | None = None,
    start_offset: int = 0,
    run_id: int | None = None,
) -> int:
    """Enqueue names as bulk jobs; returns how many chunks were accepted."""
    jobs = chunk_bulk_jobs(names, phase=phase, start_offset=start_offset, run_id=run_id)
    if not jobs:
        return 0
    accepted = await queue.add_bulk(
        BULK_SYNC_QUEUE, [(job.model_dump(mode="json"), job.job_id) for job in jobs]
    )
    logger.debug(
        "Queued %d/%d bulk chunks",
        accepted,
        len(jobs),
        extra={"queue": BULK_SYNC_QUEUE, "batch_size": len(names)},
    )
    return accepted


__all__ = [
    "BULK_SYNC_QUEUE",
    "SYNC_QUEUE",
    "chunk_bulk_jobs",
    "queue_bulk_sync",
    "queue_package_sync",
]
