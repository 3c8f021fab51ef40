"""
Sync job processing.

SyncProcessor turns queue jobs into search index writes:
    sync:       one package (delete, or fetch -> transform -> upsert)
    bulk-sync:  up to 50 packages in one batched upsert

Upstream errors from the single-package path propagate so the queue retries
the job. In the bulk path a failing package is logged and left out of the
batch; the rest of the chunk is still written.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from core.errors import PipelineError
from registry_sync.clients.downloads import DownloadsClient
from registry_sync.clients.osv import OsvClient
from registry_sync.clients.registry import RegistryClient
from registry_sync.queue.base import Job
from registry_sync.schemas.documents import PackageDocument
from registry_sync.schemas.jobs import BulkSyncJob, SyncJob
from registry_sync.sync.index import SearchIndexSynchronizer
from registry_sync.transform import transform_to_document

logger = logging.getLogger(__name__)

DEFAULT_METADATA_CONCURRENCY = 10

SYNC_DELETED = "deleted"
SYNC_SKIPPED = "skipped"
SYNC_UPSERTED = "upserted"


@dataclass
class BulkSyncResult:
    requested: int
    synced: int = 0
    missing: int = 0
    failed: int = 0


class SyncProcessor:
    def __init__(
        self,
        registry: RegistryClient,
        downloads: DownloadsClient,
        index: SearchIndexSynchronizer,
        osv: OsvClient | None = None,
        metadata_concurrency: int = DEFAULT_METADATA_CONCURRENCY,
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.downloads = downloads
        self.index = index
        self.osv = osv
        self.metadata_concurrency = max(1, metadata_concurrency)
        self._clock = clock

    def _now(self) -> datetime | None:
        return self._clock() if self._clock else None

    async def _enrich(self, doc: PackageDocument) -> PackageDocument:
        if self.osv is None:
            return doc
        counts = await self.osv.fetch_vulnerabilities(doc.name, doc.version)
        if counts is None:
            return doc
        doc.vulnerabilities = counts.total
        doc.vuln_critical = counts.critical
        doc.vuln_high = counts.high
        return doc

    async def process_sync_job(self, job: SyncJob) -> str:
        """Sync one package. Returns SYNC_DELETED, SYNC_SKIPPED or SYNC_UPSERTED."""
        name = job.package_id

        if job.deleted:
            await self.index.delete(name)
            logger.info("Deleted: %s", name, extra={"package": name})
            return SYNC_DELETED

        if name.startswith("_design/"):
            logger.debug("Skipped design document", extra={"package": name})
            return SYNC_SKIPPED

        metadata = await self.registry.fetch_package_metadata(name)
        if metadata is None:
            logger.info("Skipped (not found): %s", name, extra={"package": name})
            return SYNC_SKIPPED

        count = await self.downloads.fetch_downloads(name)
        doc = transform_to_document(metadata, downloads=count or 0, now=self._now())
        doc = await self._enrich(doc)
        await self.index.upsert([doc])

        logger.info(
            "Synced: %s v%s (%s downloads/wk)",
            doc.name,
            doc.version,
            f"{doc.downloads:,}",
            extra={"package": doc.name},
        )
        return SYNC_UPSERTED

    async def _fetch_all_metadata(
        self, names: list[str], result: BulkSyncResult
    ) -> list[dict[str, Any]]:
        semaphore = asyncio.Semaphore(self.metadata_concurrency)

        async def fetch_one(name: str) -> dict[str, Any] | None:
            async with semaphore:
                try:
                    return await self.registry.fetch_package_metadata(name)
                except PipelineError as e:
                    result.failed += 1
                    logger.warning(
                        "Metadata fetch failed in bulk sync",
                        extra={
                            "package": name,
                            "error_category": e.category.value,
                            "error_message": str(e)[:200],
                        },
                    )
                    return None

        fetched = await asyncio.gather(*(fetch_one(n) for n in names))
        return [m for m in fetched if isinstance(m, dict) and m.get("name")]

    async def process_bulk_job(self, job: BulkSyncJob) -> BulkSyncResult:
        names = list(dict.fromkeys(job.package_ids))
        result = BulkSyncResult(requested=len(names))
        logger.info(
            "Processing bulk sync: %d packages (phase %s)",
            len(names),
            job.phase if job.phase is not None else "N/A",
        )

        valid = await self._fetch_all_metadata(names, result)
        result.missing = len(names) - len(valid) - result.failed
        if not valid:
            logger.info("No valid packages in batch", extra={"batch_size": len(names)})
            return result

        downloads = await self.downloads.fetch_downloads_batch([m["name"] for m in valid])
        now = self._now()
        documents = [
            transform_to_document(m, downloads=downloads.get(m["name"], 0), now=now)
            for m in valid
        ]
        if self.osv is not None:
            semaphore = asyncio.Semaphore(self.metadata_concurrency)

            async def enrich(doc: PackageDocument) -> PackageDocument:
                async with semaphore:
                    return await self._enrich(doc)

            documents = list(await asyncio.gather(*(enrich(d) for d in documents)))

        results = await self.index.upsert(documents)
        result.synced = sum(1 for r in results if r.get("success"))
        logger.info("Bulk synced: %d/%d packages", result.synced, len(names))
        return result

    async def handle_sync(self, job: Job) -> None:
        await self.process_sync_job(SyncJob.model_validate(job.data))

    async def handle_bulk_sync(self, job: Job) -> None:
        await self.process_bulk_job(BulkSyncJob.model_validate(job.data))


__all__ = [
    "BulkSyncResult",
    "SYNC_DELETED",
    "SYNC_SKIPPED",
    "SYNC_UPSERTED",
    "SyncProcessor",
]
