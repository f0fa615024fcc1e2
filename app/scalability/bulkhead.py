"""Bulkhead: bounded worker pool for dispatch tasks. Caps concurrency and the number of queued tasks."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class BulkheadFullError(RuntimeError):
    """Raised by submit() when max_concurrent running plus max_queued waiting tasks are in the pool."""


class BulkheadExecutor:
    """
    Runs submitted coroutines as tasks, at most max_concurrent at a time. Submission does not
    wait: callers check free_slots to apply backpressure before fetching more work.
    """

    def __init__(self, max_concurrent: int = 5, max_queued: int = 100) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._max_concurrent = max_concurrent
        self._max_queued = max_queued
        self._tasks: Set[asyncio.Task] = set()
        self._active = 0

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def size(self) -> int:
        """Running plus waiting tasks."""
        return len(self._tasks)

    @property
    def free_slots(self) -> int:
        return max(0, self._max_concurrent + self._max_queued - len(self._tasks))

    def submit(
        self,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        if self.free_slots == 0:
            raise BulkheadFullError("Bulkhead: max concurrent and queue full")
        running = asyncio.get_running_loop().create_task(self._run(task, *args), name=name)
        self._tasks.add(running)
        running.add_done_callback(self._tasks.discard)
        return running

    async def _run(self, task: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async with self._semaphore:
            self._active += 1
            try:
                return await task(*args)
            finally:
                self._active -= 1

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted tasks. Returns False if some were still running at timeout."""
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Wait up to `timeout` for running tasks, then cancel the rest."""
        if await self.join(timeout):
            return
        remaining = list(self._tasks)
        logger.warning("bulkhead_cancelling_tasks", extra={"count": len(remaining)})
        for t in remaining:
            t.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)
