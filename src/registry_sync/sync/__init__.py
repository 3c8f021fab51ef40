"""Search index sync: schema, synchronizer, job processing and producers."""

from registry_sync.sync.index import SearchIndexSynchronizer
from registry_sync.sync.processor import BulkSyncResult, SyncProcessor
from registry_sync.sync.producer import (
    chunk_bulk_jobs,
    queue_bulk_sync,
    queue_package_sync,
)
from registry_sync.sync.schema import PACKAGE_FIELDS, package_collection_schema

__all__ = [
    "BulkSyncResult",
    "PACKAGE_FIELDS",
    "SearchIndexSynchronizer",
    "SyncProcessor",
    "chunk_bulk_jobs",
    "package_collection_schema",
    "queue_bulk_sync",
    "queue_package_sync",
]
