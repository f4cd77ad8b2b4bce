"""Tests for IdentityReconciler and SupervisorRegistry."""

import asyncio

import pytest

from shared.repositories import IdentityRepository
from tiktok.core.reconciler import IdentityReconciler, SupervisorRegistry


class StubSupervisor:
    def __init__(self, identity):
        self.identity = identity
        self.started = 0
        self.retired = 0

    def start(self):
        self.started += 1

    async def retire(self):
        self.retired += 1


class Spawner:
    def __init__(self):
        self.spawned = {}

    def __call__(self, identity):
        supervisor = StubSupervisor(identity)
        self.spawned.setdefault(identity, []).append(supervisor)
        return supervisor


@pytest.fixture
def spawner():
    return Spawner()


@pytest.fixture
def registry():
    return SupervisorRegistry()


@pytest.fixture
def reconciler(gateway, registry, spawner, clock):
    return IdentityReconciler(IdentityRepository(gateway), registry, spawner, clock, interval=60)


class TestReconcileOnce:
    @pytest.mark.asyncio
    async def test_starts_one_supervisor_per_active_identity(self, reconciler, store, registry):
        store.seed_identity("alice", offset=0)
        store.seed_identity("bob", offset=1)
        store.seed_identity("carol", offset=2, is_active=False)

        added, removed = await reconciler.reconcile_once()

        assert added == ["alice", "bob"]
        assert removed == []
        assert registry.identities == {"alice", "bob"}
        assert all(sup.started == 1 for sup in registry)

    @pytest.mark.asyncio
    async def test_diff_adds_new_and_retires_removed(self, reconciler, store, registry, spawner):
        alice = store.seed_identity("alice", offset=0)
        store.seed_identity("bob", offset=1)
        await reconciler.reconcile_once()

        alice["is_active"] = False
        store.seed_identity("carol", offset=2)
        added, removed = await reconciler.reconcile_once()

        assert added == ["carol"]
        assert removed == ["alice"]
        assert registry.identities == {"bob", "carol"}
        assert spawner.spawned["alice"][0].retired == 1
        assert len(spawner.spawned["bob"]) == 1
        assert spawner.spawned["bob"][0].started == 1

    @pytest.mark.asyncio
    async def test_duplicate_rows_yield_single_supervisor(self, reconciler, store, spawner):
        store.seed_identity("alice", offset=0)
        store.seed_identity("alice", offset=5)

        added, _ = await reconciler.reconcile_once()

        assert added == ["alice"]
        assert len(spawner.spawned["alice"]) == 1

    @pytest.mark.asyncio
    async def test_unchanged_registry_is_a_noop(self, reconciler, store, spawner):
        store.seed_identity("alice")
        await reconciler.reconcile_once()

        assert await reconciler.reconcile_once() == ([], [])
        assert len(spawner.spawned["alice"]) == 1

    @pytest.mark.asyncio
    async def test_registry_read_failure_keeps_running_set(self, reconciler, store, registry):
        store.seed_identity("alice")
        await reconciler.reconcile_once()
        store.broken_tables.add("tracked_usernames")

        assert await reconciler.reconcile_once() == ([], [])
        assert registry.identities == {"alice"}
        assert registry.get("alice").retired == 0


class TestRegistry:
    def test_rejects_second_supervisor_for_identity(self, registry):
        registry.add(StubSupervisor("alice"))

        with pytest.raises(ValueError, match="already running"):
            registry.add(StubSupervisor("alice"))

    @pytest.mark.asyncio
    async def test_retire_all_empties_registry(self, registry):
        supervisors = [StubSupervisor("alice"), StubSupervisor("bob")]
        for sup in supervisors:
            registry.add(sup)

        await registry.retire_all()

        assert len(registry) == 0
        assert [sup.retired for sup in supervisors] == [1, 1]


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_refreshes_every_interval(self, reconciler, store, registry, clock):
        store.seed_identity("alice")
        task = asyncio.create_task(reconciler.run())
        await clock.advance(0)
        assert registry.identities == {"alice"}

        store.seed_identity("bob", offset=1)
        await clock.advance(59)
        assert registry.identities == {"alice"}

        await clock.advance(1)
        assert registry.identities == {"alice", "bob"}

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
