"""Keeps the set of running supervisors equal to the active identity registry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator

from shared.gateway import StorageError
from shared.repositories.identity import IdentityRepository

from .clock import Clock
from .supervisor import Supervisor

LOGGER = logging.getLogger("Worker.Reconciler")

SupervisorFactory = Callable[[str], Supervisor]


class SupervisorRegistry:
    """Running supervisors keyed by identity. At most one per identity."""

    def __init__(self) -> None:
        self._supervisors: dict[str, Supervisor] = {}

    def __contains__(self, identity: object) -> bool:
        return identity in self._supervisors

    def __iter__(self) -> Iterator[Supervisor]:
        return iter(list(self._supervisors.values()))

    def __len__(self) -> int:
        return len(self._supervisors)

    @property
    def identities(self) -> set[str]:
        return set(self._supervisors)

    def get(self, identity: str) -> Supervisor | None:
        return self._supervisors.get(identity)

    def add(self, supervisor: Supervisor) -> None:
        if supervisor.identity in self._supervisors:
            raise ValueError(f"Supervisor already running for {supervisor.identity}")
        self._supervisors[supervisor.identity] = supervisor

    def pop(self, identity: str) -> Supervisor | None:
        return self._supervisors.pop(identity, None)

    async def retire_all(self) -> None:
        for identity in list(self._supervisors):
            supervisor = self._supervisors.pop(identity)
            await supervisor.retire()


class IdentityReconciler:
    """Diffs the active registry against running supervisors every ``interval`` seconds."""

    def __init__(
        self,
        identities: IdentityRepository,
        registry: SupervisorRegistry,
        spawn: SupervisorFactory,
        clock: Clock,
        interval: float = 60.0,
    ) -> None:
        self.identities = identities
        self.registry = registry
        self.spawn = spawn
        self.clock = clock
        self.interval = interval

    async def reconcile_once(self) -> tuple[list[str], list[str]]:
        """Start supervisors for new identities and retire removed ones.

        Returns ``(added, removed)``. If the registry cannot be read the
        running set is left untouched for this tick.
        """
        try:
            active = await self.identities.list_active()
        except StorageError as e:
            LOGGER.error(f"Failed to load tracked usernames, keeping current set: {e}")
            return [], []

        wanted = set(active)
        running = self.registry.identities
        added = [name for name in active if name not in running]
        removed = sorted(running - wanted)

        for identity in removed:
            supervisor = self.registry.pop(identity)
            if supervisor is not None:
                LOGGER.info(f"Stopping monitoring for removed username: {identity}")
                await supervisor.retire()

        for identity in added:
            LOGGER.info(f"Starting monitoring for new username: {identity}")
            supervisor = self.spawn(identity)
            self.registry.add(supervisor)
            supervisor.start()

        if added or removed:
            LOGGER.info(f"Now monitoring {len(self.registry)} usernames")
        return added, removed

    async def run(self) -> None:
        while True:
            await self.reconcile_once()
            try:
                await self.clock.sleep(self.interval)
            except asyncio.CancelledError:
                break
