"""Tests for PersistenceGateway retry and concurrency behaviour."""

import asyncio

import pytest

from shared.gateway import (
    PersistenceGateway,
    RetryPolicy,
    StorageBusyError,
    StorageError,
    is_busy_error,
)
from tests.fakes import settle


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def failing(errors, result="ok"):
    """Operation raising ``errors`` in order, then returning ``result``."""
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if errors:
            raise errors.pop(0)
        return result

    return operation, calls


class TestRetryPolicy:
    def test_delay_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=0.1, max_delay=2.0, jitter=0.1)

        delays = [policy.delay_for(n, rng=lambda: 0.0) for n in range(7)]

        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.6, 2.0, 2.0])

    def test_jitter_added_on_top(self):
        policy = RetryPolicy(base_delay=0.1, max_delay=2.0, jitter=0.1)

        assert policy.delay_for(0, rng=lambda: 0.5) == pytest.approx(0.15)


class TestRetries:
    @pytest.mark.asyncio
    async def test_busy_failures_retried_until_success(self, store):
        sleep = RecordingSleep()
        gateway = PersistenceGateway(store, sleep=sleep, rng=lambda: 0.5)
        operation, calls = failing([StorageBusyError("locked"), StorageBusyError("locked")])

        assert await gateway.run(operation) == "ok"

        assert calls["count"] == 3
        assert sleep.delays == pytest.approx([0.15, 0.25])

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, store):
        sleep = RecordingSleep()
        gateway = PersistenceGateway(store, RetryPolicy(max_retries=3), sleep=sleep)
        operation, calls = failing([StorageBusyError("locked") for _ in range(10)])

        with pytest.raises(StorageBusyError):
            await gateway.run(operation)

        assert calls["count"] == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_non_busy_error_not_retried(self, store):
        sleep = RecordingSleep()
        gateway = PersistenceGateway(store, sleep=sleep)
        operation, calls = failing([StorageError("syntax error")])

        with pytest.raises(StorageError, match="syntax error"):
            await gateway.run(operation)

        assert calls["count"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_table_helpers_go_through_retry(self, store):
        gateway = PersistenceGateway(store, sleep=RecordingSleep())
        store.fail_next = [StorageBusyError("locked")]

        row = await gateway.insert("job_control", {"id": 1, "status": "stopped"})

        assert row["status"] == "stopped"
        assert store.calls == 2
        assert await gateway.select_one("job_control", {"id": 1}) == row


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_at_most_three_operations_in_flight(self, store):
        gateway = PersistenceGateway(store)
        release = asyncio.Event()
        in_flight = 0
        peak = 0

        async def operation():
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await release.wait()
            in_flight -= 1
            return True

        tasks = [asyncio.create_task(gateway.run(operation)) for _ in range(10)]
        await settle()
        assert peak == 3

        release.set()
        results = await asyncio.gather(*tasks)

        assert results == [True] * 10
        assert peak == 3

    @pytest.mark.asyncio
    async def test_permit_released_while_backing_off(self, store):
        gate = asyncio.Event()

        async def blocked_sleep(_delay):
            await gate.wait()

        gateway = PersistenceGateway(store, RetryPolicy(max_concurrent=1), sleep=blocked_sleep)
        slow, _ = failing([StorageBusyError("locked")], result="slow")
        fast, _ = failing([], result="fast")

        slow_task = asyncio.create_task(gateway.run(slow))
        await settle()

        assert await asyncio.wait_for(gateway.run(fast), timeout=1) == "fast"
        assert not slow_task.done()

        gate.set()
        assert await slow_task == "slow"


class TestBusyClassification:
    def test_busy_error_is_busy(self):
        assert is_busy_error(StorageBusyError("locked"))

    def test_wrapped_busy_error_is_busy(self):
        wrapper = RuntimeError("write failed")
        wrapper.__cause__ = StorageBusyError("locked")

        assert is_busy_error(wrapper)

    def test_plain_storage_error_is_not_busy(self):
        assert not is_busy_error(StorageError("constraint violated"))
