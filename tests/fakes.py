"""In-memory stand-ins for the clock, the database and the streaming platform."""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

from shared.gateway import PersistenceGateway, RetryPolicy, StorageError
from tiktok.core.events import Disconnected
from tiktok.core.platform import RoomInfo

EPOCH = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def settle(rounds: int = 100) -> None:
    """Let every ready task run until the loop goes quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Manually advanced clock. ``sleep`` only returns when ``advance`` passes its deadline."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self._start = start
        self._now = 0.0
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._now)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
                await settle()
        self._now = target
        await settle()


class MemoryStore:
    """Dict-of-lists implementation of the store interface.

    ``fail_next`` queues exceptions raised by the next calls in order;
    ``broken_tables`` makes every call touching a table raise ``StorageError``.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._ids: dict[str, int] = defaultdict(int)
        self.fail_next: list[Exception] = []
        self.broken_tables: set[str] = set()
        self.calls = 0

    def _enter(self, table: str) -> None:
        self.calls += 1
        if self.fail_next:
            raise self.fail_next.pop(0)
        if table in self.broken_tables:
            raise StorageError(f"table {table} unavailable")

    @staticmethod
    def _matches(row: dict[str, Any], predicate: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (predicate or {}).items())

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self._enter(table)
        self._ids[table] += 1
        row = {"id": self._ids[table], **record}
        self.tables[table].append(row)
        return dict(row)

    async def update(
        self, table: str, predicate: dict[str, Any], values: dict[str, Any]
    ) -> int:
        self._enter(table)
        count = 0
        for row in self.tables[table]:
            if self._matches(row, predicate):
                row.update(values)
                count += 1
        return count

    async def select(
        self,
        table: str,
        predicate: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._enter(table)
        rows = [dict(r) for r in self.tables[table] if self._matches(r, predicate)]
        if order_by:
            column, _, direction = order_by.partition(" ")
            rows.sort(
                key=lambda r: (r.get(column) is None, r.get(column)),
                reverse=direction.upper() == "DESC",
            )
        if limit is not None:
            rows = rows[:limit]
        return rows

    def rows(self, table: str, **predicate: Any) -> list[dict[str, Any]]:
        return [r for r in self.tables[table] if self._matches(r, predicate)]

    def seed_identity(self, username: str, offset: int = 0, **fields: Any) -> dict[str, Any]:
        self._ids["tracked_usernames"] += 1
        row = {
            "id": self._ids["tracked_usernames"],
            "username": username,
            "is_active": True,
            "display_name": None,
            "added_at": EPOCH + timedelta(minutes=offset),
            "last_seen": None,
            "total_streams": 0,
            "total_duration": 0,
            "notes": None,
            **fields,
        }
        self.tables["tracked_usernames"].append(row)
        return row


def make_gateway(store: MemoryStore, **policy: Any) -> PersistenceGateway:
    async def no_sleep(_delay: float) -> None:
        return None

    return PersistenceGateway(store, RetryPolicy(**policy), sleep=no_sleep, rng=lambda: 0.0)


class FakePlatform:
    """Scriptable ``PlatformHandle``.

    ``live_error`` makes every live check raise; ``went_live`` gates
    ``wait_until_live``. Like TikTokLive, ``disconnect`` emits
    ``Disconnected`` to the bound sink.
    """

    def __init__(self, live: bool = True, room_id: str = "7301234567890") -> None:
        self.live = live
        self.room_id = room_id
        self.connected = False
        self.live_error: Exception | None = None
        self.wait_error: Exception | None = None
        self.connect_error: Exception | None = None
        self.room_info: RoomInfo | Exception = RoomInfo(
            media_url="https://pull.example/stream.m3u8",
            created_at="1714564800",
            bio="daily streams",
        )
        self.went_live = asyncio.Event()
        self.calls: list[str] = []
        self.sink = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    def bind(self, sink) -> None:
        self.sink = sink

    def emit(self, event) -> None:
        self.sink(event)

    async def fetch_is_live(self) -> bool:
        self.calls.append("fetch_is_live")
        if self.live_error is not None:
            raise self.live_error
        return self.live

    async def wait_until_live(self) -> None:
        self.calls.append("wait_until_live")
        if self.wait_error is not None:
            raise self.wait_error
        await self.went_live.wait()

    async def connect(self) -> str:
        self.calls.append("connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        return self.room_id

    async def fetch_room_info(self) -> RoomInfo:
        self.calls.append("fetch_room_info")
        if isinstance(self.room_info, Exception):
            raise self.room_info
        return self.room_info

    async def disconnect(self) -> None:
        self.calls.append("disconnect")
        self.connected = False
        if self.sink is not None:
            self.sink(Disconnected(error=""))
