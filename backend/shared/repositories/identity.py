"""Repository for the tracked_usernames table (the identity registry)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from shared.gateway import PersistenceGateway
from shared.models.identity import MonitoredIdentity

logger = logging.getLogger(__name__)

TABLE = "tracked_usernames"


def normalize_username(username: str) -> str:
    """Strip whitespace and a leading '@', lowercase."""
    return username.strip().lstrip("@").lower()


class IdentityRepository:
    """Registry reads for the reconciler, aggregate writes for the session tracker."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    async def list_active(self) -> list[str]:
        """Active usernames, oldest first, without duplicates."""
        rows = await self.gateway.select(
            TABLE, {"is_active": True}, order_by="added_at ASC", name="list active usernames"
        )
        return list(dict.fromkeys(row["username"] for row in rows))

    async def list_all(self) -> list[MonitoredIdentity]:
        rows = await self.gateway.select(TABLE, order_by="added_at ASC")
        return [MonitoredIdentity(**row) for row in rows]

    async def get(self, username: str) -> MonitoredIdentity | None:
        row = await self.gateway.select_one(TABLE, {"username": username})
        return MonitoredIdentity(**row) if row else None

    async def add(
        self, username: str, display_name: str | None = None, notes: str | None = None
    ) -> MonitoredIdentity:
        """Insert a username, or re-activate it if it is already known."""
        username = normalize_username(username)
        existing = await self.get(username)
        if existing:
            if not existing.is_active:
                await self.gateway.update(TABLE, {"username": username}, {"is_active": True})
                existing.is_active = True
                logger.info(f"Re-activated tracked username: {username}")
            return existing

        row = await self.gateway.insert(
            TABLE,
            {
                "username": username,
                "display_name": display_name,
                "notes": notes,
                "is_active": True,
                "added_at": datetime.now(timezone.utc),
            },
        )
        logger.info(f"Added tracked username: {username}")
        return MonitoredIdentity(**row)

    async def deactivate(self, username: str) -> bool:
        """Stop tracking a username. Rows are never deleted here."""
        count = await self.gateway.update(
            TABLE, {"username": normalize_username(username)}, {"is_active": False}
        )
        return count > 0

    async def touch_last_seen(self, username: str, seen_at: datetime) -> None:
        await self.gateway.update(
            TABLE, {"username": username}, {"last_seen": seen_at}, name="update last seen"
        )

    async def add_stream_totals(self, username: str, duration: int) -> None:
        """Roll one finished stream of ``duration`` seconds onto the identity."""
        identity = await self.get(username)
        if identity is None:
            logger.warning(f"[{username}] Not in registry, skipping stream totals")
            return
        await self.gateway.update(
            TABLE,
            {"username": username},
            {
                "total_streams": identity.total_streams + 1,
                "total_duration": identity.total_duration + duration,
            },
            name="update tracked username stats",
        )
