"""
Tests for the cache refresh scheduler.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from flagdeck.distribution.scheduler import CacheRefreshScheduler


@pytest.fixture
def cache():
    mock = Mock()
    mock.scheduled_refresh = AsyncMock(return_value=1)
    return mock


class TestCacheRefreshScheduler:
    def test_rejects_non_positive_interval(self, cache):
        with pytest.raises(ValueError):
            CacheRefreshScheduler(cache, 0)

    async def test_runs_sweeps_on_interval(self, cache):
        scheduler = CacheRefreshScheduler(cache, 0.01)

        await scheduler.start()
        await asyncio.sleep(0.08)
        await scheduler.stop()

        assert cache.scheduled_refresh.await_count >= 2
        assert scheduler.stats()["runs"] == cache.scheduled_refresh.await_count
        assert not scheduler.running

    async def test_start_is_idempotent(self, cache):
        scheduler = CacheRefreshScheduler(cache, 10)

        await scheduler.start()
        first_task = scheduler._task
        await scheduler.start()

        assert scheduler._task is first_task
        await scheduler.stop()

    async def test_stop_before_first_interval_runs_nothing(self, cache):
        scheduler = CacheRefreshScheduler(cache, 10)

        await scheduler.start()
        await scheduler.stop()

        cache.scheduled_refresh.assert_not_awaited()

    async def test_stop_without_start_is_noop(self, cache):
        await CacheRefreshScheduler(cache, 1).stop()

    async def test_failed_sweep_is_logged_and_loop_continues(self, cache):
        calls = {"n": 0}

        async def fail_first():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("db down")
            return 1

        cache.scheduled_refresh.side_effect = fail_first
        scheduler = CacheRefreshScheduler(cache, 0.01)

        await scheduler.start()
        await asyncio.sleep(0.08)
        await scheduler.stop()

        stats = scheduler.stats()
        assert stats["failures"] == 1
        assert stats["runs"] >= 2

    async def test_stop_cancels_sweep_exceeding_timeout(self, cache):
        started = asyncio.Event()

        async def slow_refresh():
            started.set()
            await asyncio.sleep(10)

        cache.scheduled_refresh = AsyncMock(side_effect=slow_refresh)
        scheduler = CacheRefreshScheduler(cache, 0.01, shutdown_timeout=0.05)

        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1)
        await scheduler.stop()

        assert not scheduler.running

    async def test_run_once_against_real_cache(self, distribution_cache, application, flags):
        scheduler = CacheRefreshScheduler(distribution_cache, 60)

        loaded = await scheduler.run_once()

        assert loaded == 1
        assert application.access_key in distribution_cache
