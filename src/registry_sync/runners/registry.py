"""Worker registry for mapping CLI worker names to runner functions."""

import asyncio
import logging
from typing import Any, Optional

from config.config import RegistrySyncConfig
from registry_sync.runners import workers
from registry_sync.runners.common import QueueRuntime

logger = logging.getLogger(__name__)

WORKER_REGISTRY: dict[str, dict[str, Any]] = {
    "changes": {
        "runner": workers.run_changes_listener,
        # Two listeners on the same cursor would double-enqueue every change
        "singleton": True,
    },
    "sync": {
        "runner": workers.run_sync_worker,
    },
    "bulk-sync": {
        "runner": workers.run_bulk_sync_worker,
    },
    "backfill": {
        "runner": workers.run_backfill_controller,
        "singleton": True,
    },
    "email": {
        "runner": workers.run_email_worker,
    },
    "chat": {
        "runner": workers.run_chat_worker,
    },
    "digest": {
        "runner": workers.run_digest_worker,
        "singleton": True,
    },
}


async def run_worker_from_registry(
    worker_name: str,
    config: RegistrySyncConfig,
    runtime: QueueRuntime,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
    on_heartbeat=None,
) -> None:
    """Run a worker by looking it up in the registry.

    Raises:
        ValueError: If the worker is not in the registry
    """
    if worker_name not in WORKER_REGISTRY:
        raise ValueError(f"Unknown worker: {worker_name}")

    runner = WORKER_REGISTRY[worker_name]["runner"]
    await runner(config, runtime, shutdown_event, instance_id=instance_id, on_heartbeat=on_heartbeat)


__all__ = ["WORKER_REGISTRY", "run_worker_from_registry"]
