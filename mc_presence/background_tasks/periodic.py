"""Cancellable periodic task with single-flight ticks."""

import asyncio
from typing import Awaitable, Callable, Optional

from ..logger import logger


class PeriodicTask:
    """Runs an async tick function on a fixed interval.

    The loop awaits each tick before sleeping, so a slow tick delays the next
    one instead of overlapping it. ``run_once`` shares the same lock, which
    makes manual ticks wait for a scheduled one in flight.
    """

    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[None]],
        interval: Callable[[], float],
        run_immediately: bool = True,
    ):
        """Initialize periodic task.

        Args:
            name: Name used in logs
            tick: Coroutine function run on every tick
            interval: Returns the delay in seconds before the next tick; read
                on every iteration so interval changes apply without restart
            run_immediately: Tick as soon as started instead of after one interval
        """
        self.name = name
        self._tick = tick
        self._interval = interval
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._stop_flag = False
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning(f"Periodic task {self.name} already running")
            return
        self._stop_flag = False
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"Periodic task {self.name} started")

    async def stop(self) -> None:
        """Cancel the loop and wait until it has exited."""
        self._stop_flag = True

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info(f"Periodic task {self.name} stopped")

    async def run_once(self) -> None:
        async with self._lock:
            await self._tick()

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval())

        while not self._stop_flag:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in periodic task {self.name}: {e}", exc_info=True)

            await asyncio.sleep(self._interval())
