"""Common worker execution patterns and utilities.

Provides reusable pieces for running workers with consistent:
- Queue wiring from configuration
- Startup retry
- Shutdown handling
- Resource cleanup
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

from config.config import QUEUE_NAMES, RegistrySyncConfig
from core.logging.context import set_log_context
from registry_sync.queue import (
    Broker,
    InMemoryBroker,
    JobOptions,
    JobQueue,
    JsonDedupStore,
    MemoryDedupStore,
)

logger = logging.getLogger(__name__)

# Startup retry configuration (overridable via env vars)
DEFAULT_STARTUP_RETRIES = 5
DEFAULT_STARTUP_BACKOFF_BASE = 5  # seconds


@dataclass
class QueueRuntime:
    """Broker, producer-side queue and per-topic options shared by one process."""

    broker: Broker
    queue: JobQueue
    options: dict[str, JobOptions]

    async def start(self) -> None:
        await _start_with_retry(self.broker.start, "broker")

    async def stop(self) -> None:
        await self.broker.stop()


def build_queue_runtime(config: RegistrySyncConfig, client_id: Optional[str] = None) -> QueueRuntime:
    """Create the broker and dedup store selected by ``queue.backend``."""
    options = {name: JobOptions.from_config(config.get_queue_options(name)) for name in QUEUE_NAMES}

    if config.queue_backend == "kafka":
        from registry_sync.queue.kafka import KafkaBroker

        broker: Broker = KafkaBroker(
            bootstrap_servers=config.bootstrap_servers,
            topic_prefix=config.topic_prefix,
            group_prefix=config.topic_prefix,
            client_id=client_id,
        )
    else:
        broker = InMemoryBroker()

    dedup_store = JsonDedupStore(config.dedup_dir) if config.dedup_dir else MemoryDedupStore()
    logger.info(
        "Queue runtime configured",
        extra={
            "backend": config.queue_backend,
            "dedup": type(dedup_store).__name__,
        },
    )
    return QueueRuntime(
        broker=broker,
        queue=JobQueue(broker, dedup_store=dedup_store, options=options),
        options=options,
    )


async def _start_with_retry(
    start_fn: Callable,
    label: str,
    max_retries: Optional[int] = None,
    backoff_base: Optional[int] = None,
) -> None:
    """Retry an async start function with linear backoff.

    On exhaustion, re-raises the last exception so the caller's fatal error
    handler can log it and enter health-server error mode.

    Args:
        start_fn: Async callable (e.g. worker.start, broker.start)
        label: Human-readable label for log messages
        max_retries: Number of attempts (default: 5, env: STARTUP_MAX_RETRIES)
        backoff_base: Base seconds for backoff (default: 5, env: STARTUP_BACKOFF_SECONDS)
    """
    max_retries = max_retries or int(
        os.getenv("STARTUP_MAX_RETRIES", str(DEFAULT_STARTUP_RETRIES))
    )
    backoff_base = backoff_base or int(
        os.getenv("STARTUP_BACKOFF_SECONDS", str(DEFAULT_STARTUP_BACKOFF_BASE))
    )

    for attempt in range(1, max_retries + 1):
        try:
            await start_fn()
            return
        except Exception as e:
            if attempt == max_retries:
                logger.error(
                    f"Failed to start {label} after {max_retries} attempts, giving up",
                    extra={"error": str(e), "attempts": max_retries},
                )
                raise
            delay = backoff_base * attempt
            logger.warning(
                f"Failed to start {label} (attempt {attempt}/{max_retries}), "
                f"retrying in {delay}s",
                extra={"error": str(e), "attempt": attempt, "delay": delay},
            )
            await asyncio.sleep(delay)


def _stage_context(stage_name: str, instance_id: Optional[str]) -> str:
    context = {"stage": stage_name}
    if instance_id is not None:
        context["worker_id"] = f"{stage_name}-{instance_id}"
        suffix = f" (instance {instance_id})"
    else:
        suffix = ""
    set_log_context(**context)
    return suffix


async def execute_worker_with_shutdown(
    worker_instance,
    stage_name: str,
    shutdown_event: asyncio.Event,
    stop_method: str = "stop",
    instance_id: Optional[str] = None,
) -> None:
    """Execute a worker with standard shutdown handling.

    Args:
        worker_instance: Worker with a blocking start() and a stop() method
        stage_name: Name for logging context
        shutdown_event: Event to signal graceful shutdown
        stop_method: Name of the stop method on worker (default: "stop")
        instance_id: Instance identifier for multi-instance deployments (optional)
    """
    logger_suffix = _stage_context(stage_name, instance_id)
    logger.info(f"Starting {stage_name}{logger_suffix}...")

    stop_fn = getattr(worker_instance, stop_method)

    async def shutdown_watcher():
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {stage_name}{logger_suffix}...")
        await stop_fn()

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        await _start_with_retry(worker_instance.start, stage_name)
    finally:
        watcher_task.cancel()
        try:
            await watcher_task
        except asyncio.CancelledError:
            pass
        await stop_fn()


async def execute_loop_with_shutdown(
    loop_fn: Callable,
    stage_name: str,
    shutdown_event: asyncio.Event,
    instance_id: Optional[str] = None,
) -> None:
    """Run ``loop_fn(shutdown_event)`` (a loop that exits once the event is set)."""
    logger_suffix = _stage_context(stage_name, instance_id)
    logger.info(f"Starting {stage_name}{logger_suffix}...")
    await loop_fn(shutdown_event)
    logger.info(f"{stage_name}{logger_suffix} stopped")


__all__ = [
    "QueueRuntime",
    "build_queue_runtime",
    "execute_loop_with_shutdown",
    "execute_worker_with_shutdown",
]
