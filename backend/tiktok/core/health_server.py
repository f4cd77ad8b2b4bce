"""Liveness and per-username status over HTTP for container platforms."""

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from .controller import MonitoringService, RunController

logger = logging.getLogger("Worker.Health")


class HealthCheckServer:
    """aiohttp app reporting job status and each supervisor's phase."""

    def __init__(
        self,
        service: "MonitoringService | None" = None,
        controller: "RunController | None" = None,
        host: str = "0.0.0.0",
        port: int | None = None,
        heartbeat_interval: float = 300.0,
    ):
        self.service: Any = service
        self.controller: Any = controller
        self.host = host
        # PORT wins when the platform injects one
        self.port = port or int(os.getenv("PORT", "4345"))
        self.heartbeat_interval = heartbeat_interval
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._heartbeat_task: asyncio.Task | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes"""
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/status", self.handle_status)
        self.app.router.add_get("/ping", self.handle_ping)

    def _job_status(self) -> str:
        return self.controller.observed.value if self.controller else "unknown"

    def _live_count(self) -> int:
        if not self.service:
            return 0
        return sum(1 for sup in self.service.registry if sup.state.is_live)

    async def handle_root(self, request: web.Request) -> web.Response:
        """Service name only"""
        return web.json_response({"service": "livetally-worker", "status": "running"})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Liveness check - always 200"""
        monitoring = self.service is not None and self.service.is_running
        return web.json_response(
            {"status": "healthy", "monitoring": monitoring, "job_status": self._job_status()},
        )

    async def handle_status(self, request: web.Request) -> web.Response:
        """Per-identity supervisor phases"""
        status = self.service.status() if self.service else {"running": False, "identities": {}}
        return web.json_response(
            {
                "service": "livetally-worker",
                "uptime_seconds": int(time.time() - self._start_time),
                "job_status": self._job_status(),
                "monitoring": status["running"],
                "live_streams": self._live_count(),
                "identities": status["identities"],
            }
        )

    async def handle_ping(self, request: web.Request) -> web.Response:
        """Ping endpoint"""
        return web.Response(text="pong")

    async def _heartbeat(self) -> None:
        """Periodic heartbeat - log uptime and monitoring status"""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            uptime = int(time.time() - self._start_time)
            tracked = len(self.service.registry) if self.service else 0
            logger.info(
                f"Heartbeat: uptime={uptime}s, job={self._job_status()}, "
                f"tracked={tracked}, live={self._live_count()}"
            )

    async def start(self) -> None:
        """Bind the HTTP listener and begin heartbeat logging.

        A port that cannot be bound is fatal for the worker.
        """
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        try:
            await web.TCPSite(self.runner, self.host, self.port).start()
        except OSError as e:
            logger.error(f"Cannot bind health server to {self.host}:{self.port}: {e}")
            await self.runner.cleanup()
            self.runner = None
            raise

        self._heartbeat_task = asyncio.create_task(self._heartbeat(), name="health-heartbeat")
        base = f"http://{self.host}:{self.port}"
        logger.info(f"Health server listening on {base} (/health, /status, /ping)")

    async def stop(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None:
            task.cancel()
        runner, self.runner = self.runner, None
        if runner is None:
            return
        try:
            await runner.cleanup()
        except Exception as e:
            logger.exception(f"Error stopping health server: {e}")
        else:
            logger.info("Health server stopped")
