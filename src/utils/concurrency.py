"""
Bounded task pool.

Caps outstanding upstream requests: submit() waits for a free slot before
creating the task, so a loop that submits work is throttled instead of
spawning unboundedly.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

logger = structlog.get_logger()


class BoundedTaskPool:
    """
    Runs coroutines with at most `limit` in flight.

    Failures inside a task are logged and produce None, they never
    propagate to the submitter. Cancellation always propagates.

    Usage:
        pool = BoundedTaskPool(limit=35, name="detail")
        for event in events:
            await pool.submit(fetch_detail, event)
        results = await pool.join()
    """

    def __init__(self, limit: int, name: str = "pool", max_detached: Optional[int] = None):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if max_detached is not None and max_detached < 1:
            raise ValueError("max_detached must be >= 1")
        self.limit = limit
        self.max_detached = max_detached
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: list[asyncio.Task] = []
        self._detached: set[asyncio.Task] = set()

        self.in_flight = 0
        self.peak_in_flight = 0
        self.completed = 0
        self.failed = 0
        self.rejected = 0

        self.logger = logger.bind(component="task_pool", pool=name)

    async def submit(self, func: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        """Wait for a free slot, then schedule func(*args)."""
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            task = asyncio.create_task(self._run(func, *args))
        except BaseException:
            self._release()
            raise
        # Released on completion even if cancelled before it ever ran
        task.add_done_callback(lambda _: self._release())
        self._tasks.append(task)
        return task

    def spawn(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Optional[asyncio.Task]:
        """
        Schedule func(*args) without waiting for a slot.

        The task itself waits for a slot, so the caller never blocks but the
        in-flight bound still holds. Spawned tasks are not part of join().
        Returns None, scheduling nothing, once `max_detached` tasks are
        already outstanding.
        """
        if self.max_detached is not None and len(self._detached) >= self.max_detached:
            self.rejected += 1
            return None
        task = asyncio.create_task(self._run_when_free(func, *args))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
        return task

    async def _run_when_free(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Optional[Any]:
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            return await self._run(func, *args)
        finally:
            self._release()

    @property
    def pending_detached(self) -> int:
        return len(self._detached)

    async def _run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Optional[Any]:
        try:
            result = await func(*args)
            self.completed += 1
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed += 1
            self.logger.warning("Pooled task failed", error=str(e))
            return None

    def _release(self) -> None:
        self.in_flight -= 1
        self._semaphore.release()

    async def join(self) -> list[Optional[Any]]:
        """Wait for every submitted task. Results keep submission order."""
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [None if isinstance(r, BaseException) else r for r in results]

    async def map(self, func: Callable[..., Awaitable[Any]], items: Iterable[Any]) -> list[Optional[Any]]:
        """Submit func(item) for every item and wait for all of them."""
        for item in items:
            await self.submit(func, item)
        return await self.join()

    async def cancel(self) -> None:
        """Cancel outstanding tasks and wait for them to finish."""
        tasks, self._tasks = self._tasks + list(self._detached), []
        self._detached.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_metrics(self) -> dict:
        return {
            "limit": self.limit,
            "in_flight": self.in_flight,
            "peak_in_flight": self.peak_in_flight,
            "completed": self.completed,
            "failed": self.failed,
            "detached": len(self._detached),
            "rejected": self.rejected,
        }
