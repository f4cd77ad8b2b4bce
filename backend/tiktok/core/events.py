"""Typed platform events and the one place raw payloads are parsed.

Raw TikTokLive event objects are loosely shaped: the user may be missing, a
nickname may be empty, counts may be ``None``. They are validated here once,
with defaults substituted, so the supervisor only ever sees complete values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, ClassVar

from shared.models.analytics import Interaction

UNKNOWN_ACTOR = "UnknownUser"

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class InteractionEvent:
    """Base for viewer interactions that are recorded, counted and aggregated."""

    actor: str

    interaction: ClassVar[Interaction]

    @property
    def quantity(self) -> int:
        """Amount added to the session counter (1 unless the platform reports a magnitude)."""
        return 1

    def payload(self) -> dict[str, Any]:
        """Type-specific columns of the event row."""
        return {}

    def describe(self) -> str:
        return f"{self.interaction.value.upper()} | {self.actor}"


@dataclass(frozen=True)
class ChatReceived(InteractionEvent):
    text: str = ""

    interaction: ClassVar[Interaction] = Interaction.COMMENT

    def payload(self) -> dict[str, Any]:
        return {"comment": self.text}

    def describe(self) -> str:
        return f"CHAT | {self.actor}: {self.text}"


@dataclass(frozen=True)
class GiftReceived(InteractionEvent):
    gift_id: str = ""
    repeat_count: int = 1

    interaction: ClassVar[Interaction] = Interaction.GIFT

    @property
    def quantity(self) -> int:
        return self.repeat_count

    def payload(self) -> dict[str, Any]:
        return {"gift_id": self.gift_id, "repeat_count": self.repeat_count}

    def describe(self) -> str:
        return f"GIFT | {self.actor} sent gift {self.gift_id} (x{self.repeat_count})"


@dataclass(frozen=True)
class LikeReceived(InteractionEvent):
    count: int = 1
    total_count: int = 0

    interaction: ClassVar[Interaction] = Interaction.LIKE

    @property
    def quantity(self) -> int:
        return self.count

    def payload(self) -> dict[str, Any]:
        return {"like_count": self.count, "total_like_count": self.total_count}

    def describe(self) -> str:
        return f"LIKE | {self.actor} sent {self.count} likes (Total: {self.total_count})"


@dataclass(frozen=True)
class ShareReceived(InteractionEvent):
    interaction: ClassVar[Interaction] = Interaction.SHARE


@dataclass(frozen=True)
class MemberJoined(InteractionEvent):
    interaction: ClassVar[Interaction] = Interaction.MEMBER


@dataclass(frozen=True)
class StreamEnded:
    """The broadcaster ended the live."""


@dataclass(frozen=True)
class Disconnected:
    """The websocket dropped; ``error`` is whatever the client reported."""

    error: str = ""


PlatformEvent = (
    ChatReceived | GiftReceived | LikeReceived | ShareReceived | MemberJoined | StreamEnded | Disconnected
)


# ── parsing ──────────────────────────────────────────────────────────


def clean_text(text: Any) -> str:
    """Collapse runs of whitespace and trim."""
    if not isinstance(text, str):
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def actor_of(raw: Any) -> str:
    """Nickname of the user on a raw event, or ``UNKNOWN_ACTOR``."""
    user = getattr(raw, "user", None)
    nickname = getattr(user, "nickname", None) if user is not None else None
    nickname = clean_text(nickname)
    return nickname or UNKNOWN_ACTOR


def _count(value: Any, default: int) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return default
    return count if count >= 0 else default


def parse_chat(raw: Any) -> ChatReceived:
    return ChatReceived(actor=actor_of(raw), text=clean_text(getattr(raw, "comment", "")))


def parse_gift(raw: Any) -> GiftReceived:
    gift = getattr(raw, "gift", None)
    gift_id = getattr(gift, "id", None) if gift is not None else None
    if gift_id is None:
        gift_id = getattr(raw, "gift_id", "")
    return GiftReceived(
        actor=actor_of(raw),
        gift_id=str(gift_id) if gift_id is not None else "",
        repeat_count=_count(getattr(raw, "repeat_count", 1), default=1),
    )


def parse_like(raw: Any) -> LikeReceived:
    return LikeReceived(
        actor=actor_of(raw),
        count=_count(getattr(raw, "count", 1), default=1),
        total_count=_count(getattr(raw, "total", 0), default=0),
    )


def parse_share(raw: Any) -> ShareReceived:
    return ShareReceived(actor=actor_of(raw))


def parse_member(raw: Any) -> MemberJoined:
    return MemberJoined(actor=actor_of(raw))


def parse_disconnect(raw: Any) -> Disconnected:
    error = getattr(raw, "error", None) or getattr(raw, "reason", None) or ""
    return Disconnected(error=str(error))
