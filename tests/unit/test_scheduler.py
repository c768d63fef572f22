"""Tests for price_cache.cache.scheduler and the single-flight guard."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

import pytest

from price_cache.cache.guard import SingleFlight
from price_cache.cache.scheduler import PriceCacheScheduler
from price_cache.core.config import CacheConfig
from price_cache.core.exceptions import StartupError

USDC = "USDC:GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"


class TestSingleFlight:
    def test_acquire_release(self):
        guard = SingleFlight()
        assert guard.try_acquire()
        assert guard.busy
        guard.release()
        assert not guard.busy

    def test_second_acquire_suppressed(self):
        guard = SingleFlight()
        assert guard.try_acquire()
        assert not guard.try_acquire()
        assert guard.suppressed_count == 1
        assert guard.acquired_count == 1

    def test_release_without_hold_raises(self):
        with pytest.raises(RuntimeError, match="not held"):
            SingleFlight("refresh").release()

    async def test_hold_context(self):
        guard = SingleFlight()
        async with guard.hold() as outer:
            assert outer is True
            async with guard.hold() as inner:
                assert inner is False
        assert not guard.busy


class TestStart:
    async def test_initializes_once(self, engine, cache_config):
        scheduler = PriceCacheScheduler(engine, cache_config)
        report = await scheduler.start()
        assert report.initialized == 2

    async def test_retries_then_succeeds(self, engine, ranking, cache_config, source_down):
        calls = 0
        real_top = ranking.top_assets

        async def flaky(limit):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise source_down
            return await real_top(limit)

        ranking.top_assets = flaky
        scheduler = PriceCacheScheduler(engine, cache_config)
        report = await scheduler.start()

        assert calls == 2
        assert report.initialized == 2

    async def test_gives_up_after_retries(self, engine, ranking, cache_config, source_down):
        ranking.error = source_down
        scheduler = PriceCacheScheduler(engine, cache_config)

        with pytest.raises(StartupError) as exc_info:
            await scheduler.start()

        assert exc_info.value.context["attempts"] == cache_config.init_retries
        assert "feed down" in exc_info.value.context["last_error"]


class TestTick:
    async def test_successful_tick_returns_report(self, engine, cache_config, clock):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()
        clock.now = 60_000

        report = await scheduler.tick()

        assert report is not None
        assert report.timestamp == 60_000
        assert not scheduler.guard.busy

    async def test_failed_cycle_is_logged_not_raised(
        self, engine, source, cache_config, source_down, caplog
    ):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()
        source.error = source_down

        with caplog.at_level(logging.ERROR, logger="price_cache.cache.scheduler"):
            assert await scheduler.tick() is None

        assert "Price refresh cycle failed" in caplog.text
        assert not scheduler.guard.busy

    async def test_unexpected_error_is_logged_not_raised(self, engine, cache_config, caplog):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()

        async def boom():
            raise ValueError("bad quote payload")

        engine.refresh_prices = boom
        with caplog.at_level(logging.ERROR, logger="price_cache.cache.scheduler"):
            assert await scheduler.tick() is None
        assert "Unexpected error" in caplog.text

    async def test_recovers_on_next_tick(self, engine, source, cache_config, clock, source_down):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()
        source.error = source_down
        assert await scheduler.tick() is None

        source.error = None
        clock.now = 120_000
        report = await scheduler.tick()
        assert report is not None and report.timestamp == 120_000

    async def test_repeatedly_unpriced_assets_are_called_out(
        self, engine, source, cache_config, clock, caplog
    ):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()
        usdc_price = source.prices.pop(USDC)

        with caplog.at_level(logging.ERROR, logger="price_cache.cache.scheduler"):
            assert await scheduler.tick() is None
            assert "consecutive cycles" not in caplog.text
            assert await scheduler.tick() is None

        assert "unpriced for 2 consecutive cycles" in caplog.text
        assert USDC in caplog.text
        assert scheduler.unpriced_streak == 2

        source.prices[USDC] = usdc_price
        clock.now = 60_000
        assert await scheduler.tick() is not None
        assert scheduler.unpriced_streak == 0

    async def test_outage_does_not_count_as_unpriced(
        self, engine, source, cache_config, source_down
    ):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()
        source.error = source_down
        await scheduler.tick()
        await scheduler.tick()
        assert scheduler.unpriced_streak == 0

    async def test_overlapping_ticks_write_once(self, engine, store, source, cache_config):
        scheduler = PriceCacheScheduler(engine, cache_config)
        await scheduler.start()
        writes_before = store.multi_write_calls
        source.delay = 0.05

        first, second = await asyncio.gather(scheduler.tick(), scheduler.tick())

        assert [first is None, second is None].count(True) == 1
        assert store.multi_write_calls == writes_before + 1
        assert scheduler.guard.suppressed_count == 1


class TestTimer:
    async def test_timer_fires_repeatedly(self, engine, store, cache_config):
        config = cache_config.model_copy(update={"refresh_interval_ms": 10})
        scheduler = PriceCacheScheduler(engine, config)
        await scheduler.start()
        writes_before = store.multi_write_calls

        scheduler.begin()
        assert scheduler.running
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert not scheduler.running
        assert store.multi_write_calls - writes_before >= 2

    async def test_timer_survives_failing_cycles(
        self, engine, store, source, cache_config, source_down
    ):
        config = cache_config.model_copy(update={"refresh_interval_ms": 10})
        scheduler = PriceCacheScheduler(engine, config)
        await scheduler.start()
        source.error = source_down

        scheduler.begin()
        await asyncio.sleep(0.05)
        assert scheduler.running
        source.error = None
        writes_before = store.multi_write_calls
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert store.multi_write_calls > writes_before

    async def test_run_forever_stops(self, engine, cache_config):
        config = cache_config.model_copy(update={"refresh_interval_ms": 10})
        scheduler = PriceCacheScheduler(engine, config)

        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.05)
        await scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        assert not scheduler.running

    async def test_slow_cycles_do_not_overlap(self, engine, store, source, cache_config):
        config = cache_config.model_copy(update={"refresh_interval_ms": 10})
        scheduler = PriceCacheScheduler(engine, config)
        await scheduler.start()
        source.delay = 0.05
        source.prices["XLM"] = Decimal("0.2")

        scheduler.begin()
        await asyncio.sleep(0.12)
        await scheduler.stop()

        assert scheduler.guard.suppressed_count >= 1
        stamps = [e.timestamp for e in await store.range_read("XLM", 0, 10**15)]
        assert stamps == sorted(set(stamps))
