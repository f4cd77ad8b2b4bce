"""Run/stop control: polls job_control and starts or stops monitoring on edges."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from shared.gateway import StorageError
from shared.models.identity import JobStatus
from shared.repositories.job_control import JobControlRepository

from .clock import Clock
from .reconciler import IdentityReconciler, SupervisorRegistry

LOGGER = logging.getLogger("Worker.Control")


class MonitoringService:
    """The monitoring layer as one unit: the reconciler loop plus its supervisors."""

    def __init__(self, reconciler: IdentityReconciler, registry: SupervisorRegistry) -> None:
        self.reconciler = reconciler
        self.registry = registry
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        LOGGER.info("Starting monitoring...")
        self._task = asyncio.create_task(self.reconciler.run(), name="identity-reconciler")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        count = len(self.registry)
        await self.registry.retire_all()
        LOGGER.info(f"Monitoring stopped ({count} supervisors retired)")

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "identities": {sup.identity: sup.snapshot() for sup in self.registry},
        }


class RunController:
    """Edge-triggered job switch.

    The observed status starts as stopped, so a row that already reads
    ``started`` at boot starts monitoring on the first poll.
    """

    def __init__(
        self,
        job_control: JobControlRepository,
        service: MonitoringService,
        clock: Clock,
        poll_interval: float = 2.0,
    ) -> None:
        self.job_control = job_control
        self.service = service
        self.clock = clock
        self.poll_interval = poll_interval
        self.observed = JobStatus.STOPPED

    async def poll_once(self) -> JobStatus:
        try:
            desired = await self.job_control.get_status()
        except StorageError as e:
            LOGGER.warning(f"Failed to read job control, keeping {self.observed.value}: {e}")
            return self.observed

        if desired is self.observed:
            return desired

        LOGGER.info(f"Job status changed: {self.observed.value} -> {desired.value}")
        self.observed = desired
        if desired is JobStatus.STARTED:
            self.service.start()
        else:
            await self.service.stop()
        return desired

    async def run(self) -> None:
        LOGGER.info(f"Polling job control every {self.poll_interval}s")
        try:
            while True:
                await self.poll_once()
                await self.clock.sleep(self.poll_interval)
        finally:
            if self.service.is_running or len(self.service.registry):
                await self.service.stop()
