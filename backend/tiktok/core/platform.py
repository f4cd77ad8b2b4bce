"""Streaming-platform collaborator: the narrow interface supervisors use,
and its TikTokLive implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from TikTokLive import TikTokLiveClient
from TikTokLive.client.web.web_settings import WebDefaults
from TikTokLive.events import (
    CommentEvent,
    DisconnectEvent,
    GiftEvent,
    JoinEvent,
    LikeEvent,
    LiveEndEvent,
    ShareEvent,
)

from .clock import Clock
from .errors import ConnectionFailure, EnrichmentFetchFailure, LiveCheckFailure
from .events import (
    PlatformEvent,
    StreamEnded,
    parse_chat,
    parse_disconnect,
    parse_gift,
    parse_like,
    parse_member,
    parse_share,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[PlatformEvent], None]


@dataclass(frozen=True)
class RoomInfo:
    media_url: str | None = None
    created_at: str | None = None
    bio: str | None = None


def parse_room_info(data: Any) -> RoomInfo:
    """Pull the HLS URL, creation time and streamer bio out of a room-info dict."""
    if not isinstance(data, dict):
        raise EnrichmentFetchFailure("room info missing")
    stream_url = data.get("stream_url") or {}
    owner = data.get("owner") or {}
    create_time = data.get("create_time")
    return RoomInfo(
        media_url=stream_url.get("hls_pull_url") or None,
        created_at=str(create_time) if create_time is not None else None,
        bio=owner.get("bio_description") or "No bio available",
    )


class PlatformHandle(Protocol):
    """Per-identity handle onto the streaming platform."""

    @property
    def is_connected(self) -> bool: ...

    def bind(self, sink: EventSink) -> None:
        """Deliver parsed events to ``sink`` from now on."""

    async def fetch_is_live(self) -> bool: ...

    async def wait_until_live(self) -> None: ...

    async def connect(self) -> str:
        """Join the live room and return its room id."""

    async def fetch_room_info(self) -> RoomInfo: ...

    async def disconnect(self) -> None: ...


PlatformFactory = Callable[[str], PlatformHandle]


class TikTokLiveHandle:
    """``PlatformHandle`` backed by a ``TikTokLiveClient``.

    TikTokLive has no blocking wait-for-live call, so ``wait_until_live``
    polls ``is_live()`` every ``poll_interval`` seconds of clock time.
    """

    def __init__(
        self,
        username: str,
        clock: Clock,
        poll_interval: float = 30.0,
        client: TikTokLiveClient | None = None,
    ) -> None:
        self.username = username
        self.clock = clock
        self.poll_interval = poll_interval
        self.client = client or TikTokLiveClient(unique_id=f"@{username}")
        self._sink: EventSink | None = None
        self._register_listeners()

    def _register_listeners(self) -> None:
        parsers: list[tuple[type, Callable[[Any], PlatformEvent]]] = [
            (CommentEvent, parse_chat),
            (LikeEvent, parse_like),
            (ShareEvent, parse_share),
            (JoinEvent, parse_member),
            (LiveEndEvent, lambda raw: StreamEnded()),
            (DisconnectEvent, parse_disconnect),
        ]
        for event_type, parser in parsers:
            self.client.add_listener(event_type, self._forwarder(parser))
        self.client.add_listener(GiftEvent, self._on_gift)

    def _forwarder(self, parser: Callable[[Any], PlatformEvent]):
        async def forward(raw: Any) -> None:
            self._emit(parser(raw))

        return forward

    async def _on_gift(self, raw: Any) -> None:
        # Combo gifts fire once per tap while streaking; only the final event
        # carries the settled repeat_count.
        if getattr(raw, "streaking", False):
            return
        self._emit(parse_gift(raw))

    def _emit(self, event: PlatformEvent) -> None:
        if self._sink is not None:
            self._sink(event)

    def bind(self, sink: EventSink) -> None:
        self._sink = sink

    @property
    def is_connected(self) -> bool:
        return bool(self.client.connected)

    async def fetch_is_live(self) -> bool:
        try:
            return bool(await self.client.is_live())
        except Exception as e:
            raise LiveCheckFailure(f"{type(e).__name__}: {e}") from e

    async def wait_until_live(self) -> None:
        while not await self.fetch_is_live():
            await self.clock.sleep(self.poll_interval)

    async def connect(self) -> str:
        try:
            await self.client.start(fetch_room_info=True)
        except Exception as e:
            raise ConnectionFailure(f"{type(e).__name__}: {e}") from e
        return str(self.client.room_id)

    async def fetch_room_info(self) -> RoomInfo:
        try:
            return parse_room_info(self.client.room_info)
        except EnrichmentFetchFailure:
            raise
        except Exception as e:
            raise EnrichmentFetchFailure(f"{type(e).__name__}: {e}") from e

    async def disconnect(self) -> None:
        await self.client.disconnect()


def tiktok_handle_factory(
    clock: Clock, poll_interval: float = 30.0, sign_api_key: str = ""
) -> PlatformFactory:
    """Build a factory producing one ``TikTokLiveHandle`` per username."""
    if sign_api_key:
        WebDefaults.tiktok_sign_api_key = sign_api_key

    def factory(username: str) -> PlatformHandle:
        return TikTokLiveHandle(username, clock, poll_interval=poll_interval)

    return factory
