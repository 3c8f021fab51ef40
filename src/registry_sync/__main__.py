"""
Entry point for running registry sync workers.

Usage:
    # Run every worker in one process (in-memory queue is enough)
    python -m registry_sync

    # Run one worker
    python -m registry_sync --worker changes
    python -m registry_sync --worker sync --count 4
    python -m registry_sync --worker bulk-sync
    python -m registry_sync --worker email
    python -m registry_sync --worker chat
    python -m registry_sync --worker digest
    python -m registry_sync --worker backfill

    # Control the backfill and exit
    python -m registry_sync --backfill-command start
    python -m registry_sync --backfill-command status

Architecture:
    registry _changes feed → changes → sync topic → sync → Typesense
    backfill controller → bulk-sync topic → bulk-sync → Typesense
    (produced elsewhere) → email-delivery / chat-delivery topics → email / chat
    digest scheduler → digest topic → digest processor → email
"""

import argparse
import asyncio
import errno
import json
import logging
import os
import signal
import socket
import sys
from pathlib import Path
from typing import Any, Callable, Coroutine, Optional

import coolname
from dotenv import load_dotenv
from prometheus_client import REGISTRY, start_http_server

from config.config import load_config, set_config
from core.errors import PipelineError
from core.logging import get_logger, log_startup_banner, setup_logging
from core.utils import json_serializer
from registry_sync.health import HealthCheckServer
from registry_sync.runners.common import QueueRuntime, build_queue_runtime
from registry_sync.runners.registry import WORKER_REGISTRY, run_worker_from_registry
from registry_sync.runners.workers import build_backfill_controller

# __main__.py is at src/registry_sync/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

WORKER_STAGES = list(WORKER_REGISTRY.keys())
BACKFILL_COMMANDS = ["start", "pause", "resume", "reset", "status"]

logger = logging.getLogger(__name__)

# Set by signal handlers; every runner watches it
_shutdown_event: Optional[asyncio.Event] = None


def get_shutdown_event() -> asyncio.Event:
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


async def run_worker_pool(
    worker_fn: Callable[..., Coroutine[Any, Any, None]],
    count: int,
    worker_name: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Run several instances of one worker, each with its own coolname instance id."""
    logger.info("Starting worker instances", extra={"count": count, "worker_name": worker_name})

    tasks = []
    for _ in range(count):
        instance_id = coolname.generate_slug(2)
        instance_kwargs = {**kwargs, "instance_id": instance_id}
        tasks.append(
            asyncio.create_task(
                worker_fn(*args, **instance_kwargs),
                name=f"{worker_name}-{instance_id}",
            )
        )

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Worker pool cancelled, shutting down", extra={"worker_name": worker_name})
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def run_all_workers(config, runtime: QueueRuntime, shutdown_event: asyncio.Event, on_heartbeat=None):
    """Run every worker concurrently against one broker."""
    logger.info("Starting all registry sync workers...")
    tasks = [
        asyncio.create_task(
            run_worker_from_registry(
                name, config, runtime, shutdown_event, on_heartbeat=on_heartbeat
            ),
            name=name,
        )
        for name in WORKER_STAGES
    ]
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Workers cancelled, shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def run_backfill_command(config, command: str) -> dict[str, Any]:
    """Apply one backfill command to the persisted state and return the status report."""
    runtime = build_queue_runtime(config)
    controller, catalog = build_backfill_controller(config, runtime)
    try:
        if command != "status":
            await getattr(controller, command)()
        return await controller.status()
    finally:
        await catalog.close()


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != errno.EADDRINUSE:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]
        start_http_server(available_port, registry=REGISTRY)
        return available_port


def setup_signal_handlers(loop: asyncio.AbstractEventLoop):
    """First signal sets the shutdown event; a second one cancels every task.

    Signal handlers are not supported on Windows; KeyboardInterrupt is used instead.
    """

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"signal": sig.name})
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run registry sync workers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m registry_sync

    python -m registry_sync --worker changes

    python -m registry_sync --worker sync --count 4

    python -m registry_sync --backfill-command status
        """,
    )
    parser.add_argument(
        "--worker",
        choices=WORKER_STAGES + ["all"],
        default="all",
        help="Which worker(s) to run (default: all)",
    )
    parser.add_argument(
        "--count",
        "-c",
        type=int,
        default=1,
        help="Number of worker instances to run concurrently (default: 1)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server (default: 8000)",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=int(os.getenv("HEALTH_PORT", "8080")),
        help="Port for health endpoints (default: 8080, env: HEALTH_PORT)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: bundled config)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )
    parser.add_argument(
        "--backfill-command",
        choices=BACKFILL_COMMANDS,
        default=None,
        help="Apply a backfill command, print the status and exit",
    )
    return parser.parse_args()


def main():
    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    args = parse_args()

    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))
    stage = "backfill-command" if args.backfill_command else args.worker
    setup_logging(
        name="registry_sync",
        stage=stage,
        log_dir=log_dir,
        json_format=_env_flag("JSON_LOGS", "true"),
        console_level=getattr(logging, args.log_level),
        worker_id=os.getenv("WORKER_ID", f"registry-sync-{stage}"),
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )
    logger = get_logger(__name__)

    config = load_config(args.config) if args.config else load_config()
    set_config(config)

    if args.backfill_command:
        try:
            report = asyncio.run(run_backfill_command(config, args.backfill_command))
        except PipelineError as e:
            logger.error("Backfill command failed: %s", e)
            sys.exit(1)
        print(json.dumps(report, indent=2, default=json_serializer))
        return

    actual_port = start_metrics_server(args.metrics_port)
    logger.info("Metrics server started", extra={"port": actual_port})

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_signal_handlers(loop)
    shutdown_event = get_shutdown_event()

    health = HealthCheckServer(port=args.health_port, worker_name=args.worker)

    async def run() -> None:
        await health.start()
        runtime = build_queue_runtime(config, client_id=f"registry-sync-{args.worker}")
        await runtime.start()
        health.set_ready(broker_connected=True)
        log_startup_banner(
            logger,
            worker_name=f"registry-sync {args.worker}",
            queue=config.queue_backend,
            concurrency=args.count,
            health_port=health.actual_port,
        )
        try:
            if args.worker == "all":
                await run_all_workers(config, runtime, shutdown_event, health.record_heartbeat)
            elif args.count > 1:
                await run_worker_pool(
                    run_worker_from_registry,
                    args.count,
                    args.worker,
                    args.worker,
                    config,
                    runtime,
                    shutdown_event,
                    on_heartbeat=health.record_heartbeat,
                )
            else:
                await run_worker_from_registry(
                    args.worker,
                    config,
                    runtime,
                    shutdown_event,
                    on_heartbeat=health.record_heartbeat,
                )
        finally:
            health.set_ready(broker_connected=False)
            await runtime.stop()
            await health.stop()

    if args.count > 1 and WORKER_REGISTRY.get(args.worker, {}).get("singleton"):
        logger.warning("Worker %s runs as a single instance; ignoring --count", args.worker)
        args.count = 1

    try:
        loop.run_until_complete(run())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except Exception as e:
        logger.error("Fatal error", extra={"error": str(e)}, exc_info=True)
        logger.warning("Entering ERROR MODE - health endpoint will remain alive")

        async def run_fatal_error_mode():
            error_health = HealthCheckServer(port=args.health_port, worker_name=args.worker)
            error_health.set_error(f"Fatal error: {e}")
            await error_health.start()
            await get_shutdown_event().wait()
            await error_health.stop()

        try:
            loop.run_until_complete(run_fatal_error_mode())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received in error mode, shutting down...")
    finally:
        loop.close()
        logger.info("Registry sync shutdown complete")


if __name__ == "__main__":
    main()
