"""Notification delivery: email, chat and digests."""

from registry_sync.delivery.chat_worker import ChatDeliveryWorker
from registry_sync.delivery.digest import (
    DigestProcessor,
    DigestResult,
    register_digest_schedules,
)
from registry_sync.delivery.email_worker import EmailDeliveryWorker
from registry_sync.delivery.store import (
    Integration,
    MemoryNotificationStore,
    Notification,
    PostgresNotificationStore,
)
from registry_sync.delivery.unsubscribe import (
    generate_unsubscribe_token,
    verify_unsubscribe_token,
)

__all__ = [
    "ChatDeliveryWorker",
    "DigestProcessor",
    "DigestResult",
    "EmailDeliveryWorker",
    "Integration",
    "MemoryNotificationStore",
    "Notification",
    "PostgresNotificationStore",
    "generate_unsubscribe_token",
    "register_digest_schedules",
    "verify_unsubscribe_token",
]
