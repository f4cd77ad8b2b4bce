"""Create the worker tables and seed the job_control row.

Usage:
    python db_init.py
"""

import asyncio
import sys
from pathlib import Path

# Ensure backend/ is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from shared.database import DatabaseManager, PoolConfig
from shared.schema import INDEXES, TABLES, setup_database_schema
from tiktok.core.config import get_settings


async def main() -> None:
    settings = get_settings()
    db = DatabaseManager(settings.database_url, PoolConfig.for_service("scripts"))
    await db.connect()
    try:
        async with db.pool.acquire() as conn:
            await setup_database_schema(conn)
            status = await conn.fetchval("SELECT status FROM job_control WHERE id = 1")
        print(f"✓ Applied {len(TABLES)} tables and {len(INDEXES)} indexes")
        print(f"✓ job_control status: {status}")
    finally:
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
