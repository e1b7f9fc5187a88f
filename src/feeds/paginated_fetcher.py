"""
Paginated catalog fetcher with bounded concurrency and early termination.

The upstream never reports a total. Page 0 is fetched first: a full page
means "many pages" (a conservative ceiling), anything less means exactly one.
Pages are then fetched `concurrency` at a time, and the first batch that
contains an empty page is the last one requested.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

PageFetcher = Callable[[int], Awaitable[list[Any]]]


class PaginatedEventFetcher:
    """
    Fetch every item of a paginated endpoint.

    Args:
        fetch_page: coroutine returning the items of a zero-based page number
        page_size: items per full page
        page_ceiling: page count assumed when page 0 is full
        concurrency: pages requested in parallel per batch
        inter_batch_delay: pause between batches, in seconds
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        page_size: int,
        page_ceiling: int = 100,
        concurrency: int = 5,
        inter_batch_delay: float = 0.1,
        name: str = "catalog",
    ):
        if page_size < 1 or concurrency < 1 or page_ceiling < 1:
            raise ValueError("page_size, concurrency and page_ceiling must be >= 1")
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.page_ceiling = page_ceiling
        self.concurrency = concurrency
        self.inter_batch_delay = inter_batch_delay

        self.requested_pages: list[int] = []
        self.failed_pages: list[int] = []

        self.logger = logger.bind(component="paginator", catalog=name)

    async def fetch_all(self) -> list[Any]:
        self.requested_pages = []
        self.failed_pages = []

        first_page = await self._safe_fetch(0)
        total_pages = self._estimate_pages(first_page)
        self.logger.debug("Estimated pages", total_pages=total_pages)

        items: list[Any] = []
        page = 0
        batches = 0
        while page < total_pages:
            numbers = list(range(page, min(page + self.concurrency, total_pages)))
            results = await asyncio.gather(*(
                self._page(number, first_page) for number in numbers
            ))
            batches += 1
            for result in results:
                items.extend(result)
            page += len(numbers)

            if any(not result for result in results):
                break
            if page < total_pages and self.inter_batch_delay > 0:
                await asyncio.sleep(self.inter_batch_delay)

        self.logger.info(
            "Catalog fetched",
            items=len(items),
            pages=len(self.requested_pages),
            batches=batches,
            failed_pages=len(self.failed_pages),
        )
        return items

    def _estimate_pages(self, first_page: Optional[list[Any]]) -> int:
        if first_page is not None and len(first_page) >= self.page_size:
            return self.page_ceiling
        return 1

    async def _page(self, number: int, first_page: Optional[list[Any]]) -> list[Any]:
        # Page 0 was already fetched unless that first request failed
        if number == 0 and first_page is not None:
            return first_page
        return await self._safe_fetch(number) or []

    async def _safe_fetch(self, number: int) -> Optional[list[Any]]:
        """Fetch one page. A failed page is logged and reported as None."""
        self.requested_pages.append(number)
        try:
            result = await self.fetch_page(number)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_pages.append(number)
            self.logger.warning("Page fetch failed", page=number, error=str(e))
            return None
        if not isinstance(result, list):
            self.failed_pages.append(number)
            self.logger.warning("Page payload is not a list", page=number)
            return None
        return result
