"""Shared async polling loop abstraction."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable

from switchboard.infrastructure.logger import logger


class PollLoop:
    """An async polling loop that calls a function at regular intervals.

    At most one tick is in flight at a time: ``run_once`` is a no-op while a
    previous tick is still running, whether it was started by the loop itself
    or by a direct caller.
    """

    def __init__(self, name: str, interval_s: float, fn: Callable[[], Awaitable[None]]) -> None:
        self._name = name
        self._interval = interval_s
        self._fn = fn
        self._task: asyncio.Task[None] | None = None
        self._stopped = True
        self._in_flight = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling loop as a background task. Calling it twice is harmless."""
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._loop())
        logger.info(f"{self._name} loop started", interval_s=self._interval)

    def stop(self) -> None:
        """Stop the polling loop. Calling it on a stopped loop is harmless."""
        self._stopped = True
        if self._task:
            self._task.cancel()
            self._task = None
            logger.info(f"{self._name} loop stopped")

    async def close(self, timeout: float) -> None:
        """Stop the loop, giving an in-flight tick up to ``timeout`` seconds to finish before cancelling it."""
        self._stopped = True
        task, self._task = self._task, None
        if task is None:
            return
        if not self._in_flight:
            task.cancel()
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            logger.warning(f"{self._name} tick still running at shutdown, cancelling")
            task.cancel()
            await asyncio.wait({task})
        logger.info(f"{self._name} loop stopped")

    def update_interval(self, interval_s: float) -> None:
        """Change the period; applies from the next sleep."""
        self._interval = interval_s
        logger.info(f"{self._name} interval updated", interval_s=interval_s)

    async def run_once(self) -> bool:
        """Run one tick unless one is already in flight. Returns whether it ran."""
        if self._in_flight:
            return False
        self._in_flight = True
        try:
            await self._fn()
        finally:
            self._in_flight = False
        return True

    async def _loop(self) -> None:
        while not self._stopped:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception(f"Error in {self._name} loop")
            if not self._stopped:
                await asyncio.sleep(self._interval)


class BackgroundTasks:
    """Holds references to fire-and-forget coroutines and logs their failures."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._tasks: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[None], **log_context: object) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task[None]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f"{self._name} background task failed", error=str(exc), exc_info=exc, **log_context)

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait for every spawned coroutine to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    async def close(self, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for spawned coroutines, then cancel the stragglers."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{self._name} cancelling unfinished background tasks", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)
