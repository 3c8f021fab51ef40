"""Pydantic schemas for queue payloads and search documents."""

from registry_sync.schemas.documents import PackageDocument
from registry_sync.schemas.jobs import (
    BULK_CHUNK_SIZE,
    BulkSyncJob,
    ChangeEvent,
    ChatDeliveryJob,
    ChatNotification,
    CriticalAlertProps,
    DigestJob,
    EmailDeliveryJob,
    ReleaseLaunchedProps,
    SyncJob,
    make_bulk_job_id,
)

__all__ = [
    "BULK_CHUNK_SIZE",
    "BulkSyncJob",
    "ChangeEvent",
    "ChatDeliveryJob",
    "ChatNotification",
    "CriticalAlertProps",
    "DigestJob",
    "EmailDeliveryJob",
    "PackageDocument",
    "ReleaseLaunchedProps",
    "SyncJob",
    "make_bulk_job_id",
]
