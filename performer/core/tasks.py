"""Fire-and-forget task tracking for the event loop.

Every background coroutine the performer starts (deferred drains, song
polling, stall timers) goes through a TaskRunner so it keeps a strong
reference, logs its failure instead of losing it, and can be cancelled
together at shutdown.
"""

import asyncio
from typing import Any, Callable, Coroutine

from loguru import logger


class TaskRunner:
    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._timers: set[asyncio.TimerHandle] = set()

    def spawn(self, coro: Coroutine, name: str = "task") -> asyncio.Task:
        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def call_later(
        self, delay: float, fn: Callable[..., Coroutine], *args: Any
    ) -> asyncio.TimerHandle:
        """Spawn ``fn(*args)`` after ``delay`` seconds. Cancel the handle to abort."""
        loop = asyncio.get_running_loop()
        name = getattr(fn, "__name__", "deferred")

        def fire():
            self._timers.discard(handle)
            self.spawn(fn(*args), name=name)

        self._timers = {h for h in self._timers if not h.cancelled()}
        handle = loop.call_later(delay, fire)
        self._timers.add(handle)
        return handle

    @staticmethod
    async def _run(coro: Coroutine, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Background task '{}' failed: {}", name, e)

    def active_count(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def shutdown(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
