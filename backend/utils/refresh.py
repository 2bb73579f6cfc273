"""
Periodic Refresh
A polling task with an explicit owner: started and stopped by whoever holds it.
"""
import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

from core import logger


class RefreshTask:
    """
    Polls `fetch` every `interval` seconds until stopped.

    A failed cycle, whether `fetch` or `on_result` raised, is handed to
    `on_error` (or logged) and polling continues.

    Usage:
        async with RefreshTask(client.get_stats, 10, on_result=render):
            await some_other_work()
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        interval: float,
        on_result: Optional[Callable[[Any], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        name: str = "refresh"
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self.on_result = on_result
        self.on_error = on_error
        self.name = name
        self.cycles = 0
        self.failures = 0

        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"{self.name} is already running")
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current cycle to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def __aenter__(self) -> "RefreshTask":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    @staticmethod
    async def _call(callback: Callable, value: Any) -> None:
        result = callback(value)
        if inspect.isawaitable(result):
            await result

    async def _run_cycle(self) -> None:
        self.cycles += 1
        try:
            result = await self.fetch()
            if self.on_result:
                await self._call(self.on_result, result)
        except Exception as e:
            self.failures += 1
            await self._report(e)

    async def _report(self, error: Exception) -> None:
        if self.on_error:
            try:
                await self._call(self.on_error, error)
                return
            except Exception as handler_error:
                logger.exception(f"{self.name}: error handler failed", {"error": str(handler_error)})
        logger.warning(f"{self.name}: refresh failed, retrying in {self.interval:g}s", {"error": str(error)})

    async def _run(self) -> None:
        while not self._stop.is_set():
            await self._run_cycle()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
