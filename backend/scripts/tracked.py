"""Manage tracked usernames and the worker run switch.

Usage:
    python tracked.py list
    python tracked.py add <username> [--display-name NAME] [--notes TEXT]
    python tracked.py remove <username>
    python tracked.py start
    python tracked.py stop
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure backend/ is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from shared.database import DatabaseManager, PoolConfig, PostgresStore
from shared.gateway import PersistenceGateway
from shared.models.identity import JobStatus
from shared.repositories import IdentityRepository, JobControlRepository
from tiktok.core.config import get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the TikTok worker")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List tracked usernames")

    add = sub.add_parser("add", help="Track a username")
    add.add_argument("username")
    add.add_argument("--display-name", default=None)
    add.add_argument("--notes", default=None)

    remove = sub.add_parser("remove", help="Stop tracking a username")
    remove.add_argument("username")

    sub.add_parser("start", help="Set job_control to started")
    sub.add_parser("stop", help="Set job_control to stopped")
    return parser


async def run_command(args: argparse.Namespace, gateway: PersistenceGateway) -> int:
    identities = IdentityRepository(gateway)
    job_control = JobControlRepository(gateway)

    if args.command == "list":
        rows = await identities.list_all()
        status = await job_control.get_status()
        print(f"=== Tracked usernames ({len(rows)}) | job: {status.value} ===\n")
        for identity in rows:
            flag = "active" if identity.is_active else "inactive"
            hours = identity.total_duration / 3600
            print(
                f"  @{identity.username:<24} {flag:<8} "
                f"streams={identity.total_streams:<4} hours={hours:.1f}"
            )
        return 0

    if args.command == "add":
        identity = await identities.add(args.username, args.display_name, args.notes)
        print(f"✓ Tracking @{identity.username}")
        return 0

    if args.command == "remove":
        if await identities.deactivate(args.username):
            print(f"✓ Stopped tracking @{args.username}")
            return 0
        print(f"✗ Unknown username: @{args.username}")
        return 1

    status = JobStatus.STARTED if args.command == "start" else JobStatus.STOPPED
    await job_control.set_status(status)
    print(f"✓ job_control set to {status.value}")
    return 0


async def main() -> int:
    args = build_parser().parse_args()
    settings = get_settings()
    db = DatabaseManager(settings.database_url, PoolConfig.for_service("scripts"))
    await db.connect()
    try:
        return await run_command(args, PersistenceGateway(PostgresStore(db.pool)))
    finally:
        await db.disconnect()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
