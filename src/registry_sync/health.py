"""
Health check endpoints for registry sync workers.

Provides Kubernetes-compatible health checks:
- /health/live - Liveness check (is the event loop responsive?)
- /health/ready - Readiness check (broker connected, upstream reachable?)

Usage:
    health = HealthCheckServer(port=8080, worker_name="sync-0")
    await health.start()
    health.set_ready(broker_connected=True)
    ...
    await health.stop()
"""

import logging
import time
from datetime import UTC, datetime

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthCheckServer:
    """
    aiohttp server exposing liveness and readiness for one worker process.

    Readiness is 200 only when the broker is connected, upstream APIs are
    reachable and no circuit is open. A configuration error set with
    set_error() keeps the worker alive for inspection but reports it in
    the readiness body.
    """

    def __init__(
        self,
        port: int | None = 8080,
        worker_name: str = "worker",
        enabled: bool = True,
        heartbeat_timeout_seconds: float = 60.0,
    ):
        """
        Args:
            port: Port to listen on; 0 picks a free port, None disables the server
            worker_name: Name reported in responses and logs
            enabled: If False, start() and stop() are no-ops
            heartbeat_timeout_seconds: Liveness fails when the last heartbeat
                is older than this; 0 disables the check
        """
        self.port = port
        self.worker_name = worker_name
        self._enabled = enabled and port is not None
        self._ready = False
        self._broker_connected = False
        self._upstream_reachable = True
        self._circuit_open = False
        self._error_message: str | None = None
        self._started_at = datetime.now(UTC)
        self._heartbeat_timeout_seconds = heartbeat_timeout_seconds
        self._last_heartbeat: float | None = None

        self._runner: web.AppRunner | None = None
        self._actual_port: int | None = None

    def set_ready(
        self,
        broker_connected: bool,
        upstream_reachable: bool | None = None,
        circuit_open: bool = False,
    ) -> None:
        self._broker_connected = broker_connected
        if upstream_reachable is not None:
            self._upstream_reachable = upstream_reachable
        self._circuit_open = circuit_open

        old_ready = self._ready
        self._ready = broker_connected and self._upstream_reachable and not circuit_open
        if old_ready != self._ready:
            logger.info(
                "Readiness status changed: %s -> %s",
                old_ready,
                self._ready,
                extra={"worker_id": self.worker_name},
            )

    def set_error(self, error_message: str) -> None:
        """Record a startup/configuration error that prevents processing."""
        self._error_message = error_message
        self._ready = False
        logger.error(
            "Health check error state set: %s",
            error_message,
            extra={"worker_id": self.worker_name, "error": error_message},
        )

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def actual_port(self) -> int | None:
        return self._actual_port

    def record_heartbeat(self) -> None:
        self._last_heartbeat = time.monotonic()

    def _checks(self) -> dict:
        return {
            "broker_connected": self._broker_connected,
            "upstream_reachable": self._upstream_reachable,
            "circuit_closed": not self._circuit_open,
        }

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = int((datetime.now(UTC) - self._started_at).total_seconds())

        if self._heartbeat_timeout_seconds > 0 and self._last_heartbeat is not None:
            staleness = time.monotonic() - self._last_heartbeat
            if staleness > self._heartbeat_timeout_seconds:
                logger.warning(
                    "Liveness check failed: heartbeat stale for %.1fs",
                    staleness,
                    extra={"worker_id": self.worker_name},
                )
                return web.json_response(
                    {
                        "status": "unhealthy",
                        "reason": "event_loop_stale",
                        "worker": self.worker_name,
                        "heartbeat_staleness_seconds": round(staleness, 1),
                        "uptime_seconds": uptime_seconds,
                    },
                    status=503,
                )

        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": uptime_seconds,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        if self._error_message:
            # 200 so a rollout completes; the body carries the error
            return web.json_response(
                {
                    "status": "error",
                    "worker": self.worker_name,
                    "error": self._error_message,
                    "reasons": ["configuration_error"],
                }
            )

        if self._ready:
            return web.json_response(
                {"status": "ready", "worker": self.worker_name, "checks": self._checks()}
            )

        reasons = []
        if not self._broker_connected:
            reasons.append("broker_disconnected")
        if not self._upstream_reachable:
            reasons.append("upstream_unreachable")
        if self._circuit_open:
            reasons.append("circuit_open")
        return web.json_response(
            {
                "status": "not_ready",
                "worker": self.worker_name,
                "reasons": reasons,
                "checks": self._checks(),
            },
            status=503,
        )

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    async def _try_start_on_port(self, port: int) -> bool:
        runner = web.AppRunner(self.create_app())
        await runner.setup()
        site = web.TCPSite(runner, "0.0.0.0", port, reuse_address=True)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            # Port in use: errno 98 (Linux) or 10048 (Windows)
            if e.errno in (98, 10048):
                return False
            raise

        self._runner = runner
        server = site._server
        if server is not None and server.sockets:
            self._actual_port = server.sockets[0].getsockname()[1]
        else:
            self._actual_port = port
        return True

    async def start(self) -> None:
        """Start listening; falls back to a dynamic port if the configured one is taken."""
        if not self._enabled or self._runner is not None:
            return

        started = await self._try_start_on_port(self.port)
        if not started and self.port != 0:
            logger.warning("Port %s in use, falling back to dynamic port assignment", self.port)
            started = await self._try_start_on_port(0)

        if not started:
            logger.warning("Could not start health check server; continuing without it")
            self._enabled = False
            return

        logger.info(
            "Health check server started: http://localhost:%s/health/ready",
            self._actual_port,
            extra={"worker_id": self.worker_name},
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        self._actual_port = None
        logger.info("Health check server stopped", extra={"worker_id": self.worker_name})


__all__ = ["HealthCheckServer"]
