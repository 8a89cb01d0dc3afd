"""
Unit tests for the request coalescer.
"""

import asyncio

import pytest

from shared.metrics import MetricsCollector
from service_fred_proxy.app.caching.coalescer import RequestCoalescer


class TestRequestCoalescer:
    """Test cases for RequestCoalescer."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("test_coalescer")

    @pytest.fixture
    def coalescer(self, metrics):
        return RequestCoalescer(metrics=metrics)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, coalescer, metrics):
        """Test that N concurrent callers trigger a single fetch."""
        gate = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await gate.wait()
            return ["payload"]

        waiters = [asyncio.create_task(coalescer.resolve("series|SP500", fetch)) for _ in range(10)]
        await asyncio.sleep(0)
        while coalescer.in_flight_count == 0:
            await asyncio.sleep(0)
        gate.set()

        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(result == ["payload"] for result in results)
        assert all(result is results[0] for result in results)
        assert metrics.sample_value("coalesced_requests_total", cache_type="default") == 9

    @pytest.mark.asyncio
    async def test_handle_removed_after_success(self, coalescer):
        async def fetch():
            return 1

        assert await coalescer.resolve("k", fetch) == 1
        await asyncio.sleep(0)

        assert coalescer.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_sequential_calls_fetch_again(self, coalescer):
        """Test that completed fetches are not reused."""
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return calls

        assert await coalescer.resolve("k", fetch) == 1
        await asyncio.sleep(0)
        assert await coalescer.resolve("k", fetch) == 2

    @pytest.mark.asyncio
    async def test_failure_propagates_to_all_waiters(self, coalescer):
        """Test that every waiter sees the same error and the key is freed."""
        gate = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await gate.wait()
            raise RuntimeError("upstream down")

        waiters = [asyncio.create_task(coalescer.resolve("k", fetch)) for _ in range(3)]
        while coalescer.in_flight_count == 0:
            await asyncio.sleep(0)
        gate.set()

        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert calls == 1
        assert all(isinstance(result, RuntimeError) for result in results)
        await asyncio.sleep(0)
        assert coalescer.in_flight_count == 0

        async def recovered():
            return "ok"

        assert await coalescer.resolve("k", recovered) == "ok"

    @pytest.mark.asyncio
    async def test_distinct_keys_run_independently(self, coalescer):
        started = []
        gate = asyncio.Event()

        async def fetch(name):
            started.append(name)
            await gate.wait()
            return name

        first = asyncio.create_task(coalescer.resolve("a", lambda: fetch("a")))
        second = asyncio.create_task(coalescer.resolve("b", lambda: fetch("b")))
        while len(started) < 2:
            await asyncio.sleep(0)

        assert coalescer.in_flight_count == 2
        gate.set()
        assert await asyncio.gather(first, second) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_fresh_caller_waits_for_plain_flight(self, coalescer):
        """Test that a fresh fetch starts only after the plain one finishes."""
        gate = asyncio.Event()
        outstanding = 0
        peak = 0
        calls = []

        async def fetch(name):
            nonlocal outstanding, peak
            outstanding += 1
            peak = max(peak, outstanding)
            calls.append(name)
            await gate.wait()
            outstanding -= 1
            return name

        plain = asyncio.create_task(coalescer.resolve("k", lambda: fetch("plain")))
        while not calls:
            await asyncio.sleep(0)
        fresh = asyncio.create_task(coalescer.resolve("k", lambda: fetch("fresh"), fresh=True))
        for _ in range(5):
            await asyncio.sleep(0)

        assert calls == ["plain"]
        gate.set()

        assert await asyncio.gather(plain, fresh) == ["plain", "fresh"]
        assert calls == ["plain", "fresh"]
        assert peak == 1

    @pytest.mark.asyncio
    async def test_fresh_caller_survives_failed_plain_flight(self, coalescer):
        gate = asyncio.Event()

        async def failing():
            await gate.wait()
            raise RuntimeError("upstream down")

        async def fresh_fetch():
            return "fresh"

        plain = asyncio.create_task(coalescer.resolve("k", failing))
        while coalescer.in_flight_count == 0:
            await asyncio.sleep(0)
        fresh = asyncio.create_task(coalescer.resolve("k", fresh_fetch, fresh=True))
        await asyncio.sleep(0)
        gate.set()

        with pytest.raises(RuntimeError):
            await plain
        assert await fresh == "fresh"

    @pytest.mark.asyncio
    async def test_plain_caller_joins_fresh_flight(self, coalescer, metrics):
        gate = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "fresh"

        fresh = asyncio.create_task(coalescer.resolve("k", fetch, fresh=True))
        while coalescer.in_flight_count == 0:
            await asyncio.sleep(0)
        plain = asyncio.create_task(coalescer.resolve("k", fetch))
        await asyncio.sleep(0)
        gate.set()

        assert await asyncio.gather(fresh, plain) == ["fresh", "fresh"]
        assert calls == 1
        assert metrics.sample_value("coalesced_requests_total", cache_type="default") == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_fetch(self, coalescer):
        """Test that a disconnecting caller leaves the fetch running for others."""
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return "done"

        leaver = asyncio.create_task(coalescer.resolve("k", fetch))
        stayer = asyncio.create_task(coalescer.resolve("k", fetch))
        while coalescer.in_flight_count == 0:
            await asyncio.sleep(0)
        await asyncio.sleep(0)

        leaver.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leaver

        gate.set()
        assert await stayer == "done"
