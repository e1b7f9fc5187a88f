"""Tests for the paginated catalog fetcher."""

import asyncio

import pytest

from src.feeds.paginated_fetcher import PaginatedEventFetcher


class PageSource:
    """Serves a fixed page sequence and records requests."""

    def __init__(self, pages, failing=()):
        self.pages = pages
        self.failing = set(failing)
        self.requested: list[int] = []

    async def __call__(self, page: int):
        self.requested.append(page)
        await asyncio.sleep(0)
        if page in self.failing:
            raise RuntimeError(f"page {page} exploded")
        if page < len(self.pages):
            return list(self.pages[page])
        return []


def page_of(start: int, size: int) -> list[dict]:
    return [{"id": start + i} for i in range(size)]


class TestEarlyTermination:

    async def test_stops_after_batch_with_empty_page(self):
        size = 4
        source = PageSource([page_of(0, size), page_of(100, size), [], page_of(300, size)])
        fetcher = PaginatedEventFetcher(source, page_size=size, concurrency=3, inter_batch_delay=0)

        items = await fetcher.fetch_all()

        assert [item["id"] for item in items] == [0, 1, 2, 3, 100, 101, 102, 103]
        assert 3 not in source.requested

    async def test_page_zero_is_not_fetched_twice(self):
        size = 2
        source = PageSource([page_of(0, size), []])
        fetcher = PaginatedEventFetcher(source, page_size=size, concurrency=5, inter_batch_delay=0)

        await fetcher.fetch_all()

        assert source.requested.count(0) == 1

    async def test_short_first_page_means_single_page(self):
        source = PageSource([page_of(0, 3), page_of(10, 5)])
        fetcher = PaginatedEventFetcher(source, page_size=5, concurrency=5, inter_batch_delay=0)

        items = await fetcher.fetch_all()

        assert len(items) == 3
        assert source.requested == [0]

    async def test_respects_page_ceiling(self):
        size = 1
        source = PageSource([page_of(i * 10, size) for i in range(50)])
        fetcher = PaginatedEventFetcher(
            source, page_size=size, page_ceiling=7, concurrency=3, inter_batch_delay=0
        )

        items = await fetcher.fetch_all()

        assert len(items) == 7
        assert max(source.requested) == 6

    async def test_batches_are_bounded_by_concurrency(self):
        size = 1
        in_flight = 0
        peak = 0

        async def fetch(page):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return page_of(page, size) if page < 12 else []

        fetcher = PaginatedEventFetcher(fetch, page_size=size, concurrency=5, inter_batch_delay=0)
        items = await fetcher.fetch_all()

        assert len(items) == 12
        assert peak <= 5


class TestFailures:

    async def test_failed_page_counts_as_empty(self):
        size = 2
        source = PageSource(
            [page_of(0, size), page_of(10, size), page_of(20, size), page_of(30, size)],
            failing={2},
        )
        fetcher = PaginatedEventFetcher(source, page_size=size, concurrency=3, inter_batch_delay=0)

        items = await fetcher.fetch_all()

        assert [item["id"] for item in items] == [0, 1, 10, 11]
        assert fetcher.failed_pages == [2]
        assert 3 not in source.requested

    async def test_failed_first_page_is_refetched(self):
        calls = {"n": 0}

        async def flaky(page):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("timeout")
            return page_of(0, 2)

        fetcher = PaginatedEventFetcher(flaky, page_size=2, concurrency=5, inter_batch_delay=0)
        items = await fetcher.fetch_all()

        assert len(items) == 2
        assert calls["n"] == 2

    def test_rejects_invalid_bounds(self):
        with pytest.raises(ValueError):
            PaginatedEventFetcher(PageSource([]), page_size=0)
