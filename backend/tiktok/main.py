"""Worker entrypoint: database, monitoring layer, job control loop and health server."""

import asyncio
import logging
import signal
from dataclasses import dataclass

from shared.database import DatabaseManager, PoolConfig, PostgresStore
from shared.gateway import PersistenceGateway, RetryPolicy
from shared.repositories import AnalyticsRepository, IdentityRepository, JobControlRepository
from shared.schema import setup_database_schema
from tiktok.core.clock import Clock, SystemClock
from tiktok.core.config import TikTokWorkerSettings, get_settings
from tiktok.core.controller import MonitoringService, RunController
from tiktok.core.health_server import HealthCheckServer
from tiktok.core.logging import setup_logging
from tiktok.core.platform import PlatformFactory, tiktok_handle_factory
from tiktok.core.reconciler import IdentityReconciler, SupervisorRegistry
from tiktok.core.sessions import SessionTracker
from tiktok.core.supervisor import Supervisor, SupervisorPolicy

LOGGER: logging.Logger = logging.getLogger("Worker")


@dataclass
class Worker:
    service: MonitoringService
    controller: RunController


def build_worker(
    gateway: PersistenceGateway,
    settings: TikTokWorkerSettings,
    clock: Clock,
    platform_factory: PlatformFactory,
) -> Worker:
    """Wire repositories, session tracker, supervisors and control loops together."""
    identities = IdentityRepository(gateway)
    analytics = AnalyticsRepository(gateway)
    tracker = SessionTracker(analytics, identities, clock)
    policy = SupervisorPolicy.from_settings(settings)

    def spawn(identity: str) -> Supervisor:
        return Supervisor(
            identity,
            platform_factory(identity),
            tracker,
            analytics,
            identities,
            clock,
            policy,
        )

    registry = SupervisorRegistry()
    reconciler = IdentityReconciler(
        identities, registry, spawn, clock, interval=settings.identity_refresh_interval
    )
    service = MonitoringService(reconciler, registry)
    controller = RunController(
        JobControlRepository(gateway), service, clock, poll_interval=settings.job_poll_interval
    )
    return Worker(service=service, controller=controller)


async def runner(settings: TikTokWorkerSettings) -> None:
    db = DatabaseManager(settings.database_url, PoolConfig.for_service("worker"))
    await db.connect()
    try:
        async with db.pool.acquire() as connection:
            await setup_database_schema(connection)
        LOGGER.info("Database schema ready")

        clock = SystemClock()
        gateway = PersistenceGateway(PostgresStore(db.pool), RetryPolicy.from_settings(settings))
        platform_factory = tiktok_handle_factory(
            clock,
            poll_interval=settings.wait_live_poll_interval,
            sign_api_key=settings.euler_api_key,
        )
        worker = build_worker(gateway, settings, clock, platform_factory)

        health = HealthCheckServer(worker.service, worker.controller, port=settings.health_port)
        await health.start()
        try:
            await worker.controller.run()
        finally:
            await health.stop()
    finally:
        await db.disconnect()


async def _serve(settings: TikTokWorkerSettings) -> None:
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    if task is not None:
        try:
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
        except NotImplementedError:
            LOGGER.debug("SIGTERM handler not supported on this platform")
    try:
        await runner(settings)
    except asyncio.CancelledError:
        LOGGER.warning("Shutting down due to SIGTERM...")


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()
