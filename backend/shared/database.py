"""Database connection management and the generic table store used by the worker.

Supabase connection modes:
  - Session Pooler  (port 5432) : persistent servers, supports prepared statements
  - Transaction Pooler (port 6543) : serverless/edge, no prepared statement support
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, fields
from typing import Any, ClassVar

import asyncpg

from shared.gateway import StorageBusyError, StorageError

logger = logging.getLogger(__name__)

# SQLSTATE codes that mean "try again shortly" rather than "this query is wrong".
BUSY_SQLSTATES = frozenset(
    {
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
        "55P03",  # lock_not_available
        "53300",  # too_many_connections
    }
)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


@dataclass
class PoolConfig:
    """Database pool configuration with sensible defaults."""

    min_size: int = 1
    max_size: int = 5
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    max_retries: int = 3
    retry_delay: float = 3.0

    # - worker: long-lived, bursty writes during gift combos; the gateway
    #   semaphore caps in-flight writes at 3 so a larger pool only idles.
    # - scripts: one-shot admin commands.
    _SERVICE_PRESETS: ClassVar[dict[str, dict]] = {
        "worker": {"min_size": 1, "max_size": 4},
        "scripts": {"min_size": 0, "max_size": 1, "max_retries": 1},
    }

    @classmethod
    def for_service(cls, service: str, **overrides) -> PoolConfig:
        """Create a PoolConfig with service-specific presets."""
        valid_keys = {f.name for f in fields(cls) if not f.name.startswith("_")}
        preset = dict(cls._SERVICE_PRESETS.get(service, {}))
        preset.update(overrides)
        filtered = {k: v for k, v in preset.items() if k in valid_keys}
        return cls(**filtered)


class DatabaseManager:
    """Owns the asyncpg pool lifecycle for one process."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._pooler_mode: str = "transaction" if ":6543" in database_url else "session"

    def _pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "max_inactive_connection_lifetime": cfg.max_inactive_connection_lifetime,
        }
        if self._pooler_mode == "transaction":
            # PgBouncer in transaction mode drops prepared statements and idle conns
            kwargs.update(min_size=0, statement_cache_size=0, max_inactive_connection_lifetime=0)
        return kwargs

    async def connect(self) -> None:
        """Initialize database connection pool with retry."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        cfg = self.config
        pool_kwargs = self._pool_kwargs()
        logger.info(f"Connecting with {self._pooler_mode} pooler mode")

        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**pool_kwargs)
                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                logger.info(
                    f"Database pool created and verified "
                    f"(mode={self._pooler_mode}, size={pool_kwargs['min_size']}-{cfg.max_size})"
                )
                return
            except Exception as e:
                if self._pool is not None:
                    await self._pool.close()
                    self._pool = None
                if attempt >= cfg.max_retries:
                    logger.exception(
                        f"Database connection failed after {cfg.max_retries} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise
                delay = cfg.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                    f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool is None:
            return

        try:
            await self._pool.close()
            logger.info("Database pool closed")
        except Exception as e:
            logger.exception(f"Error closing database pool: {e}")
        finally:
            self._pool = None

    async def check_health(self) -> bool:
        """Test if pool can actually execute a query."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
            return True
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError):
            return False

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the database connection pool. Raises if not initialized."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def _order_clause(order_by: str) -> str:
    parts = order_by.split()
    if len(parts) == 2 and parts[1].upper() in ("ASC", "DESC"):
        return f"{_ident(parts[0])} {parts[1].upper()}"
    if len(parts) == 1:
        return _ident(parts[0])
    raise ValueError(f"Invalid ORDER BY clause: {order_by!r}")


def _where(predicate: dict[str, Any], start: int = 1) -> tuple[str, list[Any]]:
    if not predicate:
        return "", []
    clauses = []
    values: list[Any] = []
    for offset, (column, value) in enumerate(predicate.items()):
        clauses.append(f"{_ident(column)} = ${start + offset}")
        values.append(value)
    return " WHERE " + " AND ".join(clauses), values


def translate_error(exc: BaseException) -> StorageError:
    """Map a driver exception onto the gateway's busy/non-busy taxonomy."""
    sqlstate = getattr(exc, "sqlstate", None)
    # pool.acquire timing out means every connection is checked out
    if sqlstate in BUSY_SQLSTATES or isinstance(exc, asyncio.TimeoutError):
        return StorageBusyError(f"{type(exc).__name__}: {exc}")
    return StorageError(f"{type(exc).__name__}: {exc}")


class PostgresStore:
    """insert / update / select over single tables with equality predicates.

    Column and table names are validated identifiers; values are always bound
    parameters.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        columns = [_ident(c) for c in record]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {_ident(table)} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *record.values())
        except _DRIVER_ERRORS as e:
            raise translate_error(e) from e
        return dict(row) if row else {}

    async def update(
        self, table: str, predicate: dict[str, Any], values: dict[str, Any]
    ) -> int:
        if not values:
            return 0
        assignments = [f"{_ident(c)} = ${i}" for i, c in enumerate(values, start=1)]
        where, where_values = _where(predicate, start=len(values) + 1)
        query = f"UPDATE {_ident(table)} SET {', '.join(assignments)}{where}"
        try:
            async with self.pool.acquire() as conn:
                status = await conn.execute(query, *values.values(), *where_values)
        except _DRIVER_ERRORS as e:
            raise translate_error(e) from e
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return int(status.split()[-1])

    async def select(
        self,
        table: str,
        predicate: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where, values = _where(predicate or {})
        query = f"SELECT * FROM {_ident(table)}{where}"
        if order_by:
            query += f" ORDER BY {_order_clause(order_by)}"
        if limit is not None:
            query += f" LIMIT {int(limit)}"
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *values)
        except _DRIVER_ERRORS as e:
            raise translate_error(e) from e
        return [dict(r) for r in rows]
