"""
Request Throttle - One shared gate in front of every upstream HTTP source.

Guarantees:
- Minimum spacing between two released calls (default 1 per second)
- Optional rolling quota (N calls per 60 seconds)
- FIFO release order across all callers
- A released call that exceeds its timeout fails with UpstreamTimeout

The gate only paces the *release* of calls; the call itself runs outside
the gate, so a slow or failing request never holds it. No retries here:
fallback is the caller's job.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import UpstreamTimeout


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestThrottle:
    """
    Paces outbound calls through a single FIFO gate.

    Usage:
        throttle = RequestThrottle(min_interval_seconds=1.0, timeout_seconds=2.0)
        data = await throttle.execute(lambda: source.fetch(mint), source="jupiter")
    """

    QUOTA_WINDOW_SECONDS = 60.0

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        max_per_minute: Optional[int] = None,
        timeout_seconds: float = 2.0,
        name: str = "upstream",
        time_func: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._min_interval = max(0.0, min_interval_seconds)
        self._max_per_minute = max_per_minute
        self._timeout = timeout_seconds
        self._time = time_func

        # asyncio.Lock hands ownership to waiters in arrival order
        self._gate = asyncio.Lock()
        self._last_release: Optional[float] = None
        self._released_at: deque[float] = deque()

        self._stats = {
            "released": 0,
            "succeeded": 0,
            "timeouts": 0,
            "failures": 0,
        }

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def execute(
        self,
        request: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
        source: str = "",
    ) -> T:
        """
        Wait for a slot, then run the request with a timeout.

        Args:
            request: Zero-argument coroutine factory performing the call
            timeout: Per-call timeout (defaults to the throttle timeout)
            source: Source name used in errors and logs

        Returns:
            Whatever the request returns

        Raises:
            UpstreamTimeout: If the request exceeds its timeout
            Exception: Any error raised by the request itself
        """
        await self._acquire_slot()
        self._stats["released"] += 1

        timeout = self._timeout if timeout is None else timeout
        try:
            result = await asyncio.wait_for(request(), timeout=timeout)
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            logger.debug(f"[{self.name}] {source or 'request'} timed out after {timeout}s")
            raise UpstreamTimeout(
                f"Request timed out after {timeout}s",
                source=source or self.name,
                timeout_seconds=timeout,
            )
        except Exception:
            self._stats["failures"] += 1
            raise

        self._stats["succeeded"] += 1
        return result

    async def _acquire_slot(self) -> None:
        """Block until this caller may release one request."""
        async with self._gate:
            while True:
                wait = self._seconds_until_slot(self._time())
                if wait <= 0:
                    break
                await asyncio.sleep(wait)

            now = self._time()
            self._last_release = now
            if self._max_per_minute:
                self._released_at.append(now)

    def _seconds_until_slot(self, now: float) -> float:
        wait = 0.0

        if self._last_release is not None:
            wait = max(wait, self._last_release + self._min_interval - now)

        if self._max_per_minute:
            while self._released_at and now - self._released_at[0] >= self.QUOTA_WINDOW_SECONDS:
                self._released_at.popleft()
            if len(self._released_at) >= self._max_per_minute:
                wait = max(
                    wait,
                    self._released_at[0] + self.QUOTA_WINDOW_SECONDS - now,
                )

        return wait

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "name": self.name,
            "min_interval_seconds": self._min_interval,
            "max_per_minute": self._max_per_minute,
        }
