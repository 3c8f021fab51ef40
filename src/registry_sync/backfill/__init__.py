"""Resumable full-registry backfill."""

from registry_sync.backfill.catalog import CatalogClient
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

__all__ = [
    "BackfillController",
    "BackfillState",
    "BackfillStatus",
    "CatalogClient",
    "InvalidTransitionError",
    "JsonBackfillStore",
    "MemoryBackfillStore",
    "format_duration",
]
