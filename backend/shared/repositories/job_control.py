"""Repository for the single-row job_control table (run/stop signal)."""

from __future__ import annotations

import logging

from shared.gateway import PersistenceGateway
from shared.models.identity import JobStatus

logger = logging.getLogger(__name__)

TABLE = "job_control"
ROW = {"id": 1}


class JobControlRepository:
    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    async def get_status(self) -> JobStatus:
        """Desired run state; a missing row or unknown value reads as stopped."""
        row = await self.gateway.select_one(TABLE, ROW, name="poll job control")
        if not row:
            return JobStatus.STOPPED
        try:
            return JobStatus(row["status"])
        except ValueError:
            logger.warning(f"Unknown job_control status {row['status']!r}, treating as stopped")
            return JobStatus.STOPPED

    async def set_status(self, status: JobStatus) -> None:
        updated = await self.gateway.update(TABLE, ROW, {"status": status.value})
        if not updated:
            await self.gateway.insert(TABLE, {**ROW, "status": status.value})
