"""Tests for per-item failure isolation and the shutdown signal."""

import asyncio

import pytest

from txnwatch.sync.isolation import failures, isolate_each, isolate_gather
from txnwatch.sync.shutdown import ShutdownSignal


async def double_or_fail(n: int) -> int:
    if n == 2:
        raise ValueError("two")
    return n * 2


@pytest.mark.asyncio
class TestIsolation:
    """Tests for isolate_each and isolate_gather."""

    async def test_failure_does_not_stop_batch(self):
        outcomes = await isolate_each([1, 2, 3], double_or_fail)

        assert [o.value for o in outcomes] == [2, None, 6]
        assert [o.item for o in failures(outcomes)] == [2]
        assert isinstance(outcomes[1].error, ValueError)

    async def test_should_stop_checked_before_each_item(self):
        seen = []

        async def step(n):
            seen.append(n)
            return n

        outcomes = await isolate_each([1, 2, 3], step, should_stop=lambda: len(seen) >= 2)

        assert seen == [1, 2]
        assert len(outcomes) == 2

    async def test_propagated_errors_abort(self):
        with pytest.raises(ValueError):
            await isolate_each([1, 2, 3], double_or_fail, propagate=(ValueError,))

    async def test_gather_keeps_order_and_limit(self):
        running = 0
        peak = 0

        async def step(n):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01 * (5 - n))
            running -= 1
            return await double_or_fail(n)

        outcomes = await isolate_gather([1, 2, 3, 4], step, limit=2)

        assert [o.item for o in outcomes] == [1, 2, 3, 4]
        assert [o.ok for o in outcomes] == [True, False, True, True]
        assert peak == 2


@pytest.mark.asyncio
class TestShutdownSignal:
    async def test_wait_times_out(self):
        assert await ShutdownSignal().wait(0.01) is False

    async def test_wait_returns_when_set(self):
        shutdown = ShutdownSignal()
        asyncio.get_running_loop().call_later(0.01, shutdown.set, "SIGTERM")

        assert await shutdown.wait(5) is True
        assert shutdown.reason == "SIGTERM"

    async def test_first_reason_is_kept(self):
        shutdown = ShutdownSignal()
        shutdown.set("SIGINT")
        shutdown.set("SIGTERM")

        assert shutdown.is_set()
        assert shutdown.reason == "SIGINT"
