"""Data models for stream sessions, fan statistics and per-event records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Interaction(str, Enum):
    """Viewer interaction kinds and the columns each one feeds."""

    COMMENT = "comment"
    GIFT = "gift"
    LIKE = "like"
    SHARE = "share"
    MEMBER = "member"

    @property
    def event_table(self) -> str:
        return _EVENT_TABLES[self]

    @property
    def session_counter(self) -> str:
        return _SESSION_COUNTERS[self]

    @property
    def user_stat_column(self) -> str:
        return _USER_STAT_COLUMNS[self]


_EVENT_TABLES = {
    Interaction.COMMENT: "tiktok_chat_events",
    Interaction.GIFT: "tiktok_gift_events",
    Interaction.LIKE: "tiktok_like_events",
    Interaction.SHARE: "tiktok_share_events",
    Interaction.MEMBER: "tiktok_member_events",
}

_SESSION_COUNTERS = {
    Interaction.COMMENT: "total_comments",
    Interaction.GIFT: "total_gifts",
    Interaction.LIKE: "total_likes",
    Interaction.SHARE: "total_shares",
    Interaction.MEMBER: "total_members",
}

_USER_STAT_COLUMNS = {
    Interaction.COMMENT: "total_comments",
    Interaction.GIFT: "total_gifts",
    Interaction.LIKE: "total_likes",
    Interaction.SHARE: "total_shares",
    Interaction.MEMBER: "total_memberships",
}

SESSION_COUNTERS = tuple(_SESSION_COUNTERS.values())


@dataclass
class StreamSession:
    """One continuous broadcast, from connect until stream end or disconnect."""

    session_id: str
    streamer_username: str
    room_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration: int = 0
    counters: dict[str, int] = field(default_factory=lambda: dict.fromkeys(SESSION_COUNTERS, 0))

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_record(self) -> dict:
        return {
            "session_id": self.session_id,
            "streamer_username": self.streamer_username,
            "room_id": self.room_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            **self.counters,
        }


@dataclass
class UserStat:
    """Aggregate interaction counts for one viewer of one streamer."""

    streamer_username: str
    user_nickname: str
    first_seen: datetime
    last_seen: datetime
    total_gifts: int = 0
    total_likes: int = 0
    total_comments: int = 0
    total_shares: int = 0
    total_memberships: int = 0


@dataclass
class StreamInfo:
    """Latest known room metadata for a streamer."""

    streamer_username: str
    room_id: str
    last_updated: datetime
    is_live: bool = True
    hls_url: str | None = None
    create_time: str | None = None
    streamer_bio: str | None = None
