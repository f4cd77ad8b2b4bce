"""Bounded-concurrency, retrying wrapper around storage reads and writes.

Every worker component reaches the database through one ``PersistenceGateway``.
A semaphore caps the number of statements in flight (gift combos can fire
dozens of writes in a second), and transient "busy" failures are retried with
exponential backoff plus jitter. Any other failure propagates immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageError(Exception):
    """A storage operation failed and should not be retried."""


class StorageBusyError(StorageError):
    """The store was momentarily locked by concurrent access."""


def is_busy_error(exc: BaseException) -> bool:
    """True for transient contention errors, including ones wrapped as a cause."""
    if isinstance(exc, StorageBusyError):
        return True
    return isinstance(exc.__cause__, StorageBusyError)


class Store(Protocol):
    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, predicate: dict[str, Any], values: dict[str, Any]
    ) -> int: ...

    async def select(
        self,
        table: str,
        predicate: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...


@dataclass
class RetryPolicy:
    """Gateway limits and backoff parameters (seconds)."""

    max_concurrent: int = 3
    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        return cls(
            max_concurrent=settings.db_max_concurrent,
            max_retries=settings.db_max_retries,
            base_delay=settings.db_base_delay,
            max_delay=settings.db_max_delay,
            jitter=settings.db_jitter,
        )

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Backoff before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay) + rng() * self.jitter


class PersistenceGateway:
    """Single choke point for database access.

    Args:
        store: Object exposing ``insert`` / ``update`` / ``select``.
        policy: Concurrency limit and retry parameters.
        sleep: Awaitable sleep used between retries (injectable for tests).
        rng: Source of jitter in ``[0, 1)``.
    """

    def __init__(
        self,
        store: Store,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.store = store
        self.policy = policy or RetryPolicy()
        self._semaphore = asyncio.Semaphore(self.policy.max_concurrent)
        self._sleep = sleep
        self._rng = rng

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str = "database operation",
    ) -> T:
        """Execute ``operation`` under the semaphore, retrying busy failures.

        The permit is held only while the operation runs, never during the
        backoff sleep, so a retrying write does not starve other writers.
        """
        policy = self.policy
        attempt = 0
        while True:
            try:
                async with self._semaphore:
                    return await operation()
            except Exception as e:
                if not is_busy_error(e) or attempt >= policy.max_retries:
                    raise
                delay = policy.delay_for(attempt, self._rng)
                logger.warning(
                    f"{name} failed with busy storage, retrying in {delay:.3f}s "
                    f"(attempt {attempt + 1}/{policy.max_retries + 1})"
                )
                attempt += 1
                await self._sleep(delay)

    async def insert(self, table: str, record: dict[str, Any], name: str | None = None) -> dict:
        return await self.run(
            lambda: self.store.insert(table, record), name or f"insert {table}"
        )

    async def update(
        self,
        table: str,
        predicate: dict[str, Any],
        values: dict[str, Any],
        name: str | None = None,
    ) -> int:
        return await self.run(
            lambda: self.store.update(table, predicate, values), name or f"update {table}"
        )

    async def select(
        self,
        table: str,
        predicate: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        name: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.run(
            lambda: self.store.select(table, predicate, order_by, limit),
            name or f"select {table}",
        )

    async def select_one(
        self, table: str, predicate: dict[str, Any], name: str | None = None
    ) -> dict[str, Any] | None:
        rows = await self.select(table, predicate, limit=1, name=name)
        return rows[0] if rows else None
