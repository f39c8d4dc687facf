"""
Scheduler - Periodic scan and sweep tasks.

The two tasks are independent asyncio tasks; they coordinate only through
PipelineState (the sweep evicts what the scan accumulated).
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from .pipeline import WatchPipeline
from .significance import SignificanceEngine


logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs a callable every `interval` seconds until stopped.

    The callable may be sync or async. Exceptions are logged and the loop
    keeps going.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Any],
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval = interval
        self._func = func
        self._run_immediately = run_immediately

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Started periodic task '{self.name}' (interval={self.interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"Stopped periodic task '{self.name}'")

    async def run_once(self) -> None:
        try:
            result = self._func()
            if inspect.isawaitable(result):
                await result
            self.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"Periodic task '{self.name}' failed: {e}", exc_info=True)

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval)
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval)


class WatchScheduler:
    """Owns the scan task and the sweep task."""

    def __init__(
        self,
        pipeline: WatchPipeline,
        engine: SignificanceEngine,
        scan_interval: float = 60.0,
        sweep_interval: float = 6 * 3600.0,
    ) -> None:
        self.scan_task = PeriodicTask("scan", scan_interval, pipeline.run_scan_cycle)
        self.sweep_task = PeriodicTask(
            "sweep", sweep_interval, engine.sweep, run_immediately=False
        )

    async def start(self) -> None:
        await self.scan_task.start()
        await self.sweep_task.start()

    async def stop(self) -> None:
        await self.scan_task.stop()
        await self.sweep_task.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            task.name: {"runs": task.runs, "failures": task.failures, "running": task.running}
            for task in (self.scan_task, self.sweep_task)
        }
