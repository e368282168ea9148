"""
Periodic refresh of the distribution cache.

The sweep runs as an explicit background task started and stopped with the
application lifespan, independent of invalidation.
"""

import asyncio
from contextlib import suppress

import structlog

from .cache import DistributionCache

logger = structlog.get_logger(__name__)


class CacheRefreshScheduler:
    """Run ``DistributionCache.scheduled_refresh`` every ``interval_seconds``."""

    def __init__(
        self,
        cache: DistributionCache,
        interval_seconds: float,
        *,
        shutdown_timeout: float = 5.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.shutdown_timeout = shutdown_timeout
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._stats = {"runs": 0, "failures": 0}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the refresh loop. No-op when already running."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        logger.info("distribution.refresh.started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight sweep finish within the shutdown timeout."""
        if self._task is None:
            return
        task, self._task = self._task, None
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info("distribution.refresh.stopped", **self._stats)

    async def run_once(self) -> int:
        """Run a single sweep now."""
        self._stats["runs"] += 1
        return await self.cache.scheduled_refresh()

    async def _run(self, stop_event: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                return
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_once()
            except Exception as e:
                # The next sweep retries; readers fall back to lazy population.
                self._stats["failures"] += 1
                logger.error("distribution.refresh.failed", error=str(e), exc_info=True)

    def stats(self) -> dict[str, int | float | bool]:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            **self._stats,
        }
