"""Tests for the bounded task pool."""

import asyncio

import pytest

from src.utils.concurrency import BoundedTaskPool


class CountingFetcher:
    """Counts simultaneous in-flight calls."""

    def __init__(self, delay: float = 0.002):
        self.delay = delay
        self.in_flight = 0
        self.peak = 0
        self.calls = 0

    async def __call__(self, item):
        self.calls += 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return item * 2
        finally:
            self.in_flight -= 1


class TestBoundedTaskPool:

    async def test_never_exceeds_limit(self):
        fetcher = CountingFetcher()
        pool = BoundedTaskPool(limit=35, name="detail")

        results = await pool.map(fetcher, range(80))

        assert fetcher.calls == 80
        assert fetcher.peak <= 35
        assert pool.peak_in_flight <= 35
        assert results == [n * 2 for n in range(80)]

    async def test_submit_blocks_when_full(self):
        release = asyncio.Event()

        async def blocked(_):
            await release.wait()

        pool = BoundedTaskPool(limit=2)
        await pool.submit(blocked, 1)
        await pool.submit(blocked, 2)

        third = asyncio.create_task(pool.submit(blocked, 3))
        await asyncio.sleep(0.01)
        assert not third.done()

        release.set()
        await third
        await pool.join()
        assert pool.in_flight == 0

    async def test_failures_become_none(self):
        async def explode(item):
            if item == 2:
                raise RuntimeError("boom")
            return item

        pool = BoundedTaskPool(limit=3)
        results = await pool.map(explode, [1, 2, 3])

        assert results == [1, None, 3]
        assert pool.failed == 1

    async def test_spawn_does_not_block_but_is_bounded(self):
        fetcher = CountingFetcher(delay=0.005)
        pool = BoundedTaskPool(limit=4)

        tasks = [pool.spawn(fetcher, n) for n in range(20)]
        assert pool.pending_detached == 20

        await asyncio.gather(*tasks)
        assert fetcher.peak <= 4
        assert pool.pending_detached == 0

    async def test_cancel_stops_outstanding_work(self):
        started = asyncio.Event()

        async def forever(_):
            started.set()
            await asyncio.sleep(3600)

        pool = BoundedTaskPool(limit=1)
        pool.spawn(forever, 1)
        pool.spawn(forever, 2)
        await started.wait()

        await pool.cancel()
        assert pool.in_flight == 0

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            BoundedTaskPool(limit=0)

    async def test_spawn_rejects_past_detached_cap(self):
        release = asyncio.Event()

        async def held(_):
            await release.wait()

        pool = BoundedTaskPool(limit=1, max_detached=2)
        tasks = [pool.spawn(held, n) for n in range(3)]

        assert tasks[2] is None
        assert pool.rejected == 1
        assert pool.pending_detached == 2

        release.set()
        await asyncio.gather(*tasks[:2])
        assert pool.spawn(held, 3) is not None
        await pool.cancel()

    def test_rejects_zero_detached_cap(self):
        with pytest.raises(ValueError):
            BoundedTaskPool(limit=1, max_detached=0)
