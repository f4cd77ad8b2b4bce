"""Per-identity connection supervisor.

One ``Supervisor`` runs per tracked username as a single asyncio task. The
task drains an inbox that receives both timer wake-ups and parsed platform
events, so checks, connects and event handling for one identity never
interleave with each other.

Lifecycle::

    IDLE -> CHECKING_LIVE -> (WAITING_FOR_LIVE ->) CONNECTING -> LIVE
    LIVE -> STREAM_ENDED | DISCONNECTED -> BACKOFF -> CHECKING_LIVE ...
    any -> REMOVED   (retire)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from shared.gateway import StorageError
from shared.models.analytics import StreamInfo
from shared.repositories.analytics import AnalyticsRepository
from shared.repositories.identity import IdentityRepository

from .clock import Clock, Scheduler
from .errors import PlatformError
from .events import Disconnected, InteractionEvent, PlatformEvent, StreamEnded
from .platform import PlatformHandle
from .sessions import SessionTracker

LOGGER = logging.getLogger("Worker.Supervisor")


class Phase(str, Enum):
    IDLE = "idle"
    CHECKING_LIVE = "checking_live"
    WAITING_FOR_LIVE = "waiting_for_live"
    CONNECTING = "connecting"
    LIVE = "live"
    STREAM_ENDED = "stream_ended"
    DISCONNECTED = "disconnected"
    BACKOFF = "backoff"
    REMOVED = "removed"


# Termination events only mean something while connected; the disconnect
# that follows a stream end (or our own forced disconnect) lands in BACKOFF
# and is ignored.
TRANSITIONS: dict[tuple[Phase, type], Phase] = {
    (Phase.LIVE, StreamEnded): Phase.STREAM_ENDED,
    (Phase.LIVE, Disconnected): Phase.DISCONNECTED,
}


@dataclass
class ConnectionState:
    """Mutable state of one identity, owned by its supervisor."""

    identity: str
    phase: Phase = Phase.IDLE
    is_connecting: bool = False
    is_live: bool = False
    last_live_check_at: float | None = None
    retry_count: int = 0
    current_room_id: str | None = None
    current_session_id: str | None = None


@dataclass
class SupervisorPolicy:
    """Timing knobs for the supervisor (seconds)."""

    check_interval: float = 30.0
    rate_limit_recheck: float = 10.0
    max_retries: int = 3
    retry_delay: float = 60.0
    max_retry_delay: float = 300.0
    reconnect_cooldown: float = 60.0
    teardown_grace: float = 2.0

    @classmethod
    def from_settings(cls, settings: Any) -> SupervisorPolicy:
        return cls(
            check_interval=settings.check_interval,
            rate_limit_recheck=settings.rate_limit_recheck,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            max_retry_delay=settings.max_retry_delay,
            reconnect_cooldown=settings.reconnect_cooldown,
            teardown_grace=settings.teardown_grace,
        )

    def backoff_delay(self, retry_count: int) -> float:
        return min(self.retry_delay * (2**retry_count), self.max_retry_delay)


@dataclass(frozen=True)
class Wake:
    """Inbox message asking the supervisor to run a monitoring cycle."""

    reason: str = ""


@dataclass(frozen=True)
class Delivery:
    """Platform event stamped with the connection generation it arrived on."""

    generation: int
    event: PlatformEvent


class Supervisor:
    def __init__(
        self,
        identity: str,
        platform: PlatformHandle,
        tracker: SessionTracker,
        analytics: AnalyticsRepository,
        identities: IdentityRepository,
        clock: Clock,
        policy: SupervisorPolicy | None = None,
    ) -> None:
        self.state = ConnectionState(identity)
        self.platform = platform
        self.tracker = tracker
        self.analytics = analytics
        self.identities = identities
        self.clock = clock
        self.policy = policy or SupervisorPolicy()
        self.scheduler = Scheduler(clock)
        self.inbox: asyncio.Queue[Wake | Delivery] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        # Bumped on every connect; events from a torn-down client carry an older value.
        self._generation = 0

        platform.bind(self.deliver)

    @property
    def identity(self) -> str:
        return self.state.identity

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"supervisor:{self.identity}")
            self._task.add_done_callback(self._on_task_done)
            self.wake("start")
        return self._task

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error(f"[{self.identity}] Supervisor stopped by unexpected error", exc_info=exc)

    async def run(self) -> None:
        while self.state.phase is not Phase.REMOVED:
            message = await self.inbox.get()
            await self.dispatch(message)

    async def retire(self) -> None:
        """Stop supervising: cancel timers and the task, disconnect, forget the session.

        Safe from any phase; pending timers are cancelled, not awaited.
        """
        state = self.state
        if state.phase is Phase.REMOVED:
            return
        state.phase = Phase.REMOVED
        self.scheduler.cancel_all()

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.platform.is_connected:
            LOGGER.info(f"[{self.identity}] Disconnecting due to removal...")
            await self._force_disconnect()

        self.tracker.discard(self.identity)
        state.is_live = False
        state.is_connecting = False
        state.current_room_id = None
        state.current_session_id = None
        LOGGER.info(f"[{self.identity}] Removed from monitoring")

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def deliver(self, event: PlatformEvent) -> None:
        """Event sink bound to the platform handle."""
        if self.state.phase is not Phase.REMOVED:
            self.inbox.put_nowait(Delivery(self._generation, event))

    def wake(self, reason: str = "") -> None:
        if self.state.phase is not Phase.REMOVED:
            self.inbox.put_nowait(Wake(reason))

    def schedule(self, delay: float, reason: str) -> None:
        """Replace any pending wake-up with one ``delay`` seconds from now."""
        self.scheduler.cancel_all()
        self.scheduler.call_later(delay, lambda: self.wake(reason), label=reason)

    async def dispatch(self, message: Wake | Delivery) -> None:
        if isinstance(message, Wake):
            await self.run_cycle()
            return

        event = message.event
        if message.generation != self._generation:
            LOGGER.debug(f"[{self.identity}] Dropping {type(event).__name__} from a closed connection")
            return

        phase = self.state.phase
        next_phase = TRANSITIONS.get((phase, type(event)))
        if next_phase is not None:
            await self._on_termination(event, next_phase)
        elif isinstance(event, InteractionEvent) and phase is Phase.LIVE:
            await self._on_interaction(event)
        else:
            LOGGER.debug(f"[{self.identity}] Ignoring {type(event).__name__} in phase {phase.value}")

    # ------------------------------------------------------------------
    # Monitoring cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> None:
        state = self.state
        policy = self.policy
        if state.phase is Phase.REMOVED:
            return
        if state.is_live:
            LOGGER.debug(f"[{self.identity}] Already live, ignoring wake-up")
            return

        now = self.clock.monotonic()
        if (
            state.last_live_check_at is not None
            and now - state.last_live_check_at < policy.check_interval
        ):
            LOGGER.info(f"[{self.identity}] Rate limited, skipping check...")
            if not self.scheduler.pending:
                self.schedule(policy.rate_limit_recheck, "rate limited")
            return

        if state.is_connecting:
            LOGGER.info(f"[{self.identity}] Already attempting to connect, skipping...")
            return

        state.is_connecting = True
        state.last_live_check_at = now
        try:
            state.phase = Phase.CHECKING_LIVE
            LOGGER.info(f"[{self.identity}] Checking if streamer is live...")
            is_live = await self.platform.fetch_is_live()
            state.retry_count = 0

            if is_live:
                LOGGER.info(f"[{self.identity}] Streamer is live! Connecting...")
            else:
                state.phase = Phase.WAITING_FOR_LIVE
                LOGGER.info(f"[{self.identity}] Streamer is offline. Waiting for them to go live...")
                await self.platform.wait_until_live()
                LOGGER.info(f"[{self.identity}] Streamer is now live! Connecting...")

            await self.connect()
        except PlatformError as e:
            self._back_off(e)
        finally:
            state.is_connecting = False

    def _back_off(self, error: Exception) -> None:
        state = self.state
        state.retry_count += 1
        state.is_live = False
        LOGGER.error(f"[{self.identity}] Error in monitoring cycle: {error}")

        if state.retry_count <= self.policy.max_retries:
            delay = self.policy.backoff_delay(state.retry_count)
            state.phase = Phase.BACKOFF
            LOGGER.info(
                f"[{self.identity}] Retrying monitoring cycle in {delay}s "
                f"(attempt {state.retry_count}/{self.policy.max_retries})"
            )
            self.schedule(delay, "backoff")
        else:
            # Stalls until something calls wake(); see DESIGN.md open questions.
            LOGGER.error(
                f"[{self.identity}] Max retries reached, stopping monitoring for this streamer"
            )
            state.retry_count = 0
            state.phase = Phase.IDLE

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Join the room and open a session. Failures reschedule after the cooldown."""
        state = self.state
        state.phase = Phase.CONNECTING
        try:
            if self.platform.is_connected:
                LOGGER.info(f"[{self.identity}] Already connected, disconnecting first...")
                await self.platform.disconnect()
                await self.clock.sleep(self.policy.teardown_grace)

            self._generation += 1
            room_id = await self.platform.connect()
            LOGGER.info(f"[{self.identity}] Successfully connected to roomId: {room_id}")
            await self.tracker.open_session(state, room_id)
        except (PlatformError, StorageError) as e:
            LOGGER.error(f"[{self.identity}] Failed to connect: {e}")
            await self._abort_connect()
            return False

        state.is_live = True
        state.current_room_id = room_id
        state.retry_count = 0
        state.phase = Phase.LIVE

        now = self.clock.now()
        await self._best_effort(
            self.analytics.upsert_stream_info(StreamInfo(self.identity, room_id, now)),
            "update stream info",
        )
        await self._best_effort(
            self.identities.touch_last_seen(self.identity, now), "update last seen"
        )
        await self._enrich(room_id)
        return True

    async def _abort_connect(self) -> None:
        state = self.state
        state.is_live = False
        state.is_connecting = False
        state.current_room_id = None
        if self.platform.is_connected:
            await self._force_disconnect()
        state.phase = Phase.BACKOFF
        LOGGER.info(
            f"[{self.identity}] Restarting monitoring cycle in {self.policy.reconnect_cooldown}s "
            f"after connection failure..."
        )
        self.schedule(self.policy.reconnect_cooldown, "connect failed")

    async def _enrich(self, room_id: str) -> None:
        """Fetch HLS URL, creation time and bio once per connection."""
        try:
            info = await self.platform.fetch_room_info()
        except PlatformError as e:
            LOGGER.warning(f"[{self.identity}] Failed to fetch room info: {e}")
            return

        LOGGER.info(f"[{self.identity}] Room info fetched successfully")
        if not info.media_url:
            LOGGER.info(f"[{self.identity}] No HLS URL available")
        await self._best_effort(
            self.analytics.upsert_stream_info(
                StreamInfo(
                    streamer_username=self.identity,
                    room_id=room_id,
                    last_updated=self.clock.now(),
                    hls_url=info.media_url,
                    create_time=info.created_at,
                    streamer_bio=info.bio,
                )
            ),
            "update stream info",
        )

    # ------------------------------------------------------------------
    # Live events
    # ------------------------------------------------------------------

    async def _on_interaction(self, event: InteractionEvent) -> None:
        interaction = event.interaction
        now = self.clock.now()
        LOGGER.debug(f"[{self.identity}] {event.describe()}")

        await self._best_effort(
            self.analytics.record_event(self.identity, interaction, event.actor, event.payload(), now),
            f"insert {interaction.value} event",
        )
        # Fan stats count events; session counters count quantity.
        await self._best_effort(
            self.analytics.bump_user_stat(self.identity, event.actor, interaction, now),
            "update user stats",
        )
        await self._best_effort(
            self.tracker.record_event(self.identity, interaction.session_counter, event.quantity),
            "update session stats",
        )

    async def _on_termination(self, event: PlatformEvent, phase: Phase) -> None:
        state = self.state
        state.phase = phase
        if isinstance(event, Disconnected):
            LOGGER.error(f"[{self.identity}] DISCONNECTED | Connection lost: {event.error}")
        else:
            LOGGER.info(f"[{self.identity}] STREAM_END | Stream for @{self.identity} has ended")

        await self._best_effort(self.tracker.close_session(state), "end stream session")
        await self._best_effort(
            self.analytics.mark_offline(self.identity, self.clock.now()), "mark stream offline"
        )

        state.is_live = False
        state.is_connecting = False
        state.current_room_id = None
        if self.platform.is_connected:
            LOGGER.info(f"[{self.identity}] Disconnecting after {phase.value}...")
            await self._force_disconnect()

        state.phase = Phase.BACKOFF
        LOGGER.info(
            f"[{self.identity}] Restarting monitoring cycle in {self.policy.reconnect_cooldown}s..."
        )
        self.schedule(self.policy.reconnect_cooldown, phase.value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _best_effort(self, operation: Awaitable[Any], what: str) -> None:
        """Await a storage write; log and drop it if storage keeps failing."""
        try:
            await operation
        except StorageError as e:
            LOGGER.warning(f"[{self.identity}] Failed to {what}: {e}")

    async def _force_disconnect(self) -> None:
        try:
            await self.platform.disconnect()
        except Exception as e:
            LOGGER.warning(f"[{self.identity}] Error while disconnecting: {type(e).__name__}: {e}")

    def snapshot(self) -> dict[str, Any]:
        state = self.state
        return {
            "phase": state.phase.value,
            "running": self.running,
            "is_live": state.is_live,
            "retry_count": state.retry_count,
            "room_id": state.current_room_id,
            "session_id": state.current_session_id,
            "pending_timers": len(self.scheduler.pending),
        }
