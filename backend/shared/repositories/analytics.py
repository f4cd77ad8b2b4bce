"""Repository for stream_sessions, user_stats, tiktok_stream_info and event tables."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from shared.gateway import PersistenceGateway
from shared.models.analytics import Interaction, StreamInfo, StreamSession, UserStat

logger = logging.getLogger(__name__)

SESSIONS = "stream_sessions"
USER_STATS = "user_stats"
STREAM_INFO = "tiktok_stream_info"


class AnalyticsRepository:
    """Write path for everything a live stream produces."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    # ==================== Session Operations ====================

    async def insert_session(self, session: StreamSession) -> None:
        await self.gateway.insert(SESSIONS, session.to_record(), name="insert stream session")

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        return await self.gateway.select_one(SESSIONS, {"session_id": session_id})

    async def update_session_counter(self, session_id: str, counter: str, value: int) -> None:
        await self.gateway.update(
            SESSIONS,
            {"session_id": session_id},
            {counter: value},
            name=f"update session stats {counter}",
        )

    async def finish_session(self, session: StreamSession) -> None:
        """Persist end time, duration and final counters of a closed session."""
        await self.gateway.update(
            SESSIONS,
            {"session_id": session.session_id},
            {
                "end_time": session.end_time,
                "duration": session.duration,
                "is_completed": True,
                **session.counters,
            },
            name="update stream session end",
        )

    # ==================== Event Recording ====================

    async def record_event(
        self,
        streamer: str,
        interaction: Interaction,
        actor: str,
        payload: dict[str, Any],
        occurred_at: datetime,
    ) -> None:
        """Append one interaction row. Event rows are never updated."""
        await self.gateway.insert(
            interaction.event_table,
            {
                "streamer_username": streamer,
                "user_nickname": actor,
                **payload,
                "timestamp": occurred_at,
            },
            name=f"insert {interaction.value} event",
        )

    async def bump_user_stat(
        self, streamer: str, actor: str, interaction: Interaction, seen_at: datetime
    ) -> UserStat:
        """Count one interaction for ``actor``, creating the row on first sight."""
        key = {"streamer_username": streamer, "user_nickname": actor}
        column = interaction.user_stat_column
        row = await self.gateway.select_one(USER_STATS, key, name="select user stats")

        if row is None:
            stat = UserStat(streamer_username=streamer, user_nickname=actor, first_seen=seen_at, last_seen=seen_at)
            setattr(stat, column, 1)
            await self.gateway.insert(USER_STATS, vars(stat), name="insert new user stats")
            return stat

        row.pop("id", None)
        stat = UserStat(**row)
        setattr(stat, column, getattr(stat, column) + 1)
        stat.last_seen = seen_at
        await self.gateway.update(
            USER_STATS,
            key,
            {column: getattr(stat, column), "last_seen": seen_at},
            name=f"update user stats {column}",
        )
        return stat

    # ==================== Stream Info ====================

    async def upsert_stream_info(self, info: StreamInfo) -> None:
        values = vars(info).copy()
        username = values.pop("streamer_username")
        updated = await self.gateway.update(
            STREAM_INFO, {"streamer_username": username}, values, name="update stream info"
        )
        if not updated:
            await self.gateway.insert(STREAM_INFO, vars(info), name="insert stream info")

    async def mark_offline(self, streamer: str, at: datetime) -> None:
        await self.gateway.update(
            STREAM_INFO,
            {"streamer_username": streamer},
            {"is_live": False, "last_updated": at},
            name="mark stream offline",
        )
