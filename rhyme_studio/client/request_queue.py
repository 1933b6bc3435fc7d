"""Serial request queue.

Runs submitted coroutines one at a time, in submission order, with a fixed
pause between consecutive tasks. Each caller awaits the outcome of its own
task; a failing task does not affect the ones queued behind it.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from rhyme_studio.client.config import QUEUE_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialRequestQueue:
    def __init__(self, delay: float = QUEUE_DELAY) -> None:
        self.delay = delay
        self._items: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._runner: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        """Tasks waiting to start."""
        return len(self._items)

    @property
    def idle(self) -> bool:
        return self._runner is None or self._runner.done()

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """Queue a zero-argument coroutine function and await its result.

        The returned value (or raised exception) is exactly the task's own.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._items.append((task, future))
        if self.idle:
            self._runner = asyncio.create_task(self._run())
        return await future

    async def _run(self) -> None:
        try:
            while self._items:
                task, future = self._items.popleft()
                if future.cancelled():
                    continue

                try:
                    result = await task()
                except asyncio.CancelledError:
                    future.cancel()
                    if asyncio.current_task().cancelling():
                        raise
                    # Cancelled from inside the task, not the runner
                    logger.debug("Queued task was cancelled")
                except Exception as e:
                    logger.debug(f"Queued task failed: {e}")
                    if not future.cancelled():
                        future.set_exception(e)
                else:
                    if not future.cancelled():
                        future.set_result(result)

                if self._items and self.delay > 0:
                    await asyncio.sleep(self.delay)
        finally:
            while self._items:
                _, future = self._items.popleft()
                future.cancel()
