"""Per-identity stream sessions and the identity totals rolled up when they close."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shared.gateway import StorageError
from shared.models.analytics import SESSION_COUNTERS, StreamSession
from shared.repositories.analytics import AnalyticsRepository
from shared.repositories.identity import IdentityRepository

from .clock import Clock

if TYPE_CHECKING:
    from .supervisor import ConnectionState

LOGGER = logging.getLogger("Worker.Sessions")


class SessionTracker:
    """Opens, counts and closes stream sessions.

    Holds at most one open session per identity. Counters are kept in memory
    and the new absolute value is written on each increment, so the row never
    needs a read-modify-write.
    """

    def __init__(
        self,
        analytics: AnalyticsRepository,
        identities: IdentityRepository,
        clock: Clock,
    ) -> None:
        self.analytics = analytics
        self.identities = identities
        self.clock = clock
        self._open: dict[str, StreamSession] = {}
        self._last_stamp: dict[str, int] = {}

    def _new_session_id(self, identity: str) -> str:
        stamp = int(self.clock.now().timestamp() * 1000)
        # two sessions opened within the same millisecond must still differ
        previous = self._last_stamp.get(identity)
        if previous is not None and stamp <= previous:
            stamp = previous + 1
        self._last_stamp[identity] = stamp
        return f"{identity}_{stamp}"

    def open_session_for(self, identity: str) -> StreamSession | None:
        return self._open.get(identity)

    async def open_session(self, state: ConnectionState, room_id: str) -> StreamSession:
        """Start a session for ``state.identity``, closing a leftover one first."""
        identity = state.identity
        if identity in self._open:
            LOGGER.warning(f"[{identity}] Session still open while connecting, closing it first")
            await self.close_session(state)

        session = StreamSession(
            session_id=self._new_session_id(identity),
            streamer_username=identity,
            room_id=room_id,
            start_time=self.clock.now(),
        )
        await self.analytics.insert_session(session)

        self._open[identity] = session
        state.current_session_id = session.session_id
        LOGGER.info(f"[{identity}] Started new stream session: {session.session_id}")
        return session

    async def record_event(self, identity: str, counter: str, amount: int = 1) -> None:
        """Add ``amount`` to one session counter. No-op without an open session."""
        if counter not in SESSION_COUNTERS:
            raise ValueError(f"Unknown session counter: {counter}")
        session = self._open.get(identity)
        if session is None or amount <= 0:
            return
        session.counters[counter] += amount
        await self.analytics.update_session_counter(
            session.session_id, counter, session.counters[counter]
        )

    async def close_session(self, state: ConnectionState) -> StreamSession | None:
        """Close the open session and roll its duration onto the identity.

        Returns ``None`` if nothing was open, so duplicate stream-end and
        disconnect signals are harmless. If the finishing write fails the
        session stays open here and ``open_session`` retries it with the
        original end time; totals are rolled up only once.
        """
        identity = state.identity
        session = self._open.get(identity)
        state.current_session_id = None
        if session is None:
            return None

        if session.end_time is None:
            end_time = max(self.clock.now(), session.start_time)
            session.end_time = end_time
            session.duration = int((end_time - session.start_time).total_seconds())
            try:
                await self.identities.add_stream_totals(identity, session.duration)
            except StorageError as e:
                LOGGER.warning(f"[{identity}] Failed to update stream totals: {e}")

        await self.analytics.finish_session(session)
        self._open.pop(identity, None)

        LOGGER.info(
            f"[{identity}] Ended stream session: {session.session_id} (duration: {session.duration}s)"
        )
        return session

    def discard(self, identity: str) -> None:
        """Forget the open session without writing anything (identity retired)."""
        if self._open.pop(identity, None) is not None:
            LOGGER.info(f"[{identity}] Discarded open session bookkeeping")
