"""Runner functions, one per CLI worker name.

Every runner takes the loaded config, the process's QueueRuntime and the
shutdown event, builds its clients, and blocks until shutdown. Clients are
closed on the way out.
"""

import asyncio
import logging
from typing import Callable, Optional

from config.config import RegistrySyncConfig
from core.errors import ConfigurationError
from core.utils import generate_worker_id
from registry_sync.backfill import BackfillController, CatalogClient, JsonBackfillStore
from registry_sync.cache import TTLCache
from registry_sync.changes import ChangeListener, ChangeStreamConsumer, CursorStore
from registry_sync.clients import (
    DownloadsClient,
    EmailClient,
    OsvClient,
    RegistryClient,
    SearchIndexClient,
    SlackClient,
)
from registry_sync.delivery import (
    ChatDeliveryWorker,
    DigestProcessor,
    EmailDeliveryWorker,
    MemoryNotificationStore,
    PostgresNotificationStore,
    register_digest_schedules,
)
from registry_sync.delivery.store import NotificationStore
from registry_sync.queue import QueueWorker, RepeatableScheduler
from registry_sync.runners.common import (
    QueueRuntime,
    _start_with_retry,
    execute_loop_with_shutdown,
    execute_worker_with_shutdown,
)
from registry_sync.sync import SearchIndexSynchronizer, SyncProcessor

logger = logging.getLogger(__name__)

Heartbeat = Optional[Callable[[], None]]


def _queue_worker(
    queue_name: str,
    handler,
    runtime: QueueRuntime,
    instance_id: Optional[str],
    on_heartbeat: Heartbeat,
) -> QueueWorker:
    return QueueWorker(
        queue_name,
        handler,
        runtime.broker,
        options=runtime.options[queue_name],
        worker_id=f"{queue_name}-{instance_id}" if instance_id else generate_worker_id(queue_name),
        on_heartbeat=on_heartbeat,
    )


def _build_sync_processor(config: RegistrySyncConfig) -> tuple[SyncProcessor, list]:
    registry = RegistryClient(
        config.registry_url,
        timeout_seconds=config.registry_timeout_seconds,
        max_concurrent=config.registry_concurrency,
    )
    downloads = DownloadsClient(
        config.downloads_url,
        cache=TTLCache(),
        cache_ttl_seconds=config.downloads_cache_ttl_seconds,
        timeout_seconds=config.registry_timeout_seconds,
    )
    search = SearchIndexClient(
        config.search_url,
        config.search_api_key,
        timeout_seconds=config.search_timeout_seconds,
    )
    osv = OsvClient(config.osv_url) if config.osv_enabled else None
    processor = SyncProcessor(
        registry=registry,
        downloads=downloads,
        index=SearchIndexSynchronizer(search, config.search_collection),
        osv=osv,
    )
    clients = [c for c in (registry, downloads, search, osv) if c is not None]
    return processor, clients


async def _close_all(clients: list) -> None:
    for client in clients:
        await client.close()


def _notification_store(config: RegistrySyncConfig) -> NotificationStore:
    if config.database_url:
        return PostgresNotificationStore(config.database_url)
    logger.warning("DATABASE_URL not set, using an empty in-memory notification store")
    return MemoryNotificationStore()


def _email_client(config: RegistrySyncConfig) -> Optional[EmailClient]:
    try:
        return EmailClient(config.resend_api_key, config.email_from)
    except ConfigurationError as e:
        logger.warning("%s; email jobs will be skipped", e)
        return None


# =============================================================================
# Ingestion
# =============================================================================


async def run_changes_listener(
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
    on_heartbeat: Heartbeat = None,
) -> None:
    """Follow the change feed and enqueue SyncJobs until shutdown.

    A feed closed by the server is reopened from the last sequence seen.
    Connect failures go through startup retry and then surface as fatal.
    """
    consumer = ChangeStreamConsumer(config.replicate_url)
    cursor_store = CursorStore(config.changes_cursor_file) if config.changes_cursor_file else None
    listener = ChangeListener(
        consumer,
        runtime.queue,
        cursor_store=cursor_store,
        flush_every=config.changes_flush_every,
        stats_interval_seconds=config.stats_interval_seconds,
        worker_id=f"changes-{instance_id}" if instance_id else "changes",
    )
    initial_since = None if config.changes_since == "now" else config.changes_since

    async def consume() -> None:
        if on_heartbeat:
            on_heartbeat()
        await listener.run(listener.stats.last_seq or initial_since)

    async def follow(stop: asyncio.Event) -> None:
        while not stop.is_set():
            await _start_with_retry(consume, "changes")
            logger.info("Change feed closed, reconnecting", extra={"last_seq": listener.stats.last_seq})
            try:
                await asyncio.wait_for(stop.wait(), timeout=1.0)
            except TimeoutError:
                pass

    follow_task = asyncio.create_task(follow(shutdown_event))
    stop_task = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait({follow_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if follow_task.done():
            follow_task.result()
    finally:
        for task in (follow_task, stop_task):
            task.cancel()
        await asyncio.gather(follow_task, stop_task, return_exceptions=True)
        await consumer.close()
        logger.info("Change listener stopped", extra={"stats": vars(listener.stats)})


async def _run_sync_queue(
    queue_name: str,
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str],
    on_heartbeat: Heartbeat,
) -> None:
    processor, clients = _build_sync_processor(config)
    try:
        await _start_with_retry(processor.index.ensure_collection, "search collection")
        handler = processor.handle_sync if queue_name == "sync" else processor.handle_bulk_sync
        worker = _queue_worker(queue_name, handler, runtime, instance_id, on_heartbeat)
        await execute_worker_with_shutdown(worker, queue_name, shutdown_event, instance_id=instance_id)
    finally:
        await _close_all(clients)


async def run_sync_worker(config, runtime, shutdown_event, instance_id=None, on_heartbeat=None):
    await _run_sync_queue("sync", config, runtime, shutdown_event, instance_id, on_heartbeat)


async def run_bulk_sync_worker(config, runtime, shutdown_event, instance_id=None, on_heartbeat=None):
    await _run_sync_queue("bulk-sync", config, runtime, shutdown_event, instance_id, on_heartbeat)


def build_backfill_controller(
    config: RegistrySyncConfig, runtime: QueueRuntime
) -> tuple[BackfillController, CatalogClient]:
    catalog = CatalogClient(config.replicate_url)
    controller = BackfillController(
        JsonBackfillStore(config.backfill_state_dir),
        runtime.queue,
        catalog,
        page_size=config.backfill_page_size,
        tick_seconds=config.backfill_tick_seconds,
    )
    return controller, catalog


async def run_backfill_controller(
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
    on_heartbeat: Heartbeat = None,
) -> None:
    controller, catalog = build_backfill_controller(config, runtime)
    try:
        await execute_loop_with_shutdown(controller.run, "backfill", shutdown_event, instance_id)
    finally:
        await catalog.close()


# =============================================================================
# Delivery
# =============================================================================


async def run_email_worker(
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
    on_heartbeat: Heartbeat = None,
) -> None:
    client = _email_client(config)
    delivery = EmailDeliveryWorker(
        client,
        app_base_url=config.app_base_url,
        unsubscribe_base_url=config.unsubscribe_base_url,
        unsubscribe_secret=config.unsubscribe_secret,
    )
    worker = _queue_worker("email-delivery", delivery.handle, runtime, instance_id, on_heartbeat)
    try:
        await execute_worker_with_shutdown(worker, "email", shutdown_event, instance_id=instance_id)
    finally:
        if client is not None:
            await client.close()


async def run_chat_worker(
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
    on_heartbeat: Heartbeat = None,
) -> None:
    client = SlackClient(config.slack_api_url)
    store = _notification_store(config)
    delivery = ChatDeliveryWorker(client, store, app_base_url=config.app_base_url)
    worker = _queue_worker("chat-delivery", delivery.handle, runtime, instance_id, on_heartbeat)
    try:
        await execute_worker_with_shutdown(worker, "chat", shutdown_event, instance_id=instance_id)
    finally:
        await client.close()
        await store.close()


async def run_digest_worker(
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
    on_heartbeat: Heartbeat = None,
) -> None:
    """Digest scheduler and digest processor in one process."""
    client = _email_client(config)
    store = _notification_store(config)
    processor = DigestProcessor(
        store,
        client,
        app_base_url=config.app_base_url,
        unsubscribe_base_url=config.unsubscribe_base_url,
        unsubscribe_secret=config.unsubscribe_secret,
    )
    scheduler = RepeatableScheduler(runtime.queue)
    register_digest_schedules(scheduler, config.digest_schedules)
    worker = _queue_worker("digest", processor.handle, runtime, instance_id, on_heartbeat)
    try:
        await asyncio.gather(
            execute_loop_with_shutdown(scheduler.run, "digest-scheduler", shutdown_event, instance_id),
            execute_worker_with_shutdown(worker, "digest", shutdown_event, instance_id=instance_id),
        )
    finally:
        if client is not None:
            await client.close()
        await store.close()


__all__ = [
    "build_backfill_controller",
    "run_backfill_controller",
    "run_bulk_sync_worker",
    "run_changes_listener",
    "run_chat_worker",
    "run_digest_worker",
    "run_email_worker",
    "run_sync_worker",
]
