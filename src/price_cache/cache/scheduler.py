"""Refresh scheduler: initialize once, then refresh on a fixed period."""

from __future__ import annotations

import asyncio
import logging
import time

from price_cache.cache.engine import PriceCacheEngine
from price_cache.cache.guard import SingleFlight
from price_cache.core.config import CacheConfig
from price_cache.core.exceptions import PriceCacheError, StartupError
from price_cache.core.models import CycleReport, InitReport

logger = logging.getLogger(__name__)


class PriceCacheScheduler:
    """Drives a PriceCacheEngine from a repeating timer.

    Each timer tick is dispatched as its own task, so a slow cycle never
    delays the timer. The owned SingleFlight guard skips ticks that fire
    while a cycle is still in flight. A failed cycle is logged and the
    timer keeps going.
    """

    def __init__(
        self,
        engine: PriceCacheEngine,
        config: CacheConfig | None = None,
        guard: SingleFlight | None = None,
    ) -> None:
        self._engine = engine
        self._config = config or CacheConfig()
        self._guard = guard or SingleFlight("refresh")
        self._timer_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._stopped = asyncio.Event()
        self._unpriced: tuple[str, ...] = ()
        self._unpriced_streak = 0

    @property
    def guard(self) -> SingleFlight:
        return self._guard

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def unpriced_streak(self) -> int:
        """Consecutive cycles that failed on the same unpriced assets."""
        return self._unpriced_streak

    async def start(self) -> InitReport:
        """Initialize the cache, retrying before giving up.

        Raises
        ------
        StartupError
            Every attempt failed.
        """
        attempts = self._config.init_retries
        delay = self._config.init_retry_delay_ms / 1000
        last_error: PriceCacheError | None = None

        for attempt in range(1, attempts + 1):
            logger.info(
                "Attempting price cache initialization (attempt %d/%d)", attempt, attempts
            )
            try:
                return await self._engine.initialize_cache()
            except PriceCacheError as e:
                last_error = e
                if attempt < attempts:
                    logger.warning(
                        "Price cache initialization attempt %d failed (%s), retrying in %.0f seconds",
                        attempt,
                        e,
                        delay,
                    )
                    await asyncio.sleep(delay)

        raise StartupError(
            f"Failed to initialize price cache after {attempts} attempts. "
            f"Last error: {last_error}",
            context={"attempts": attempts, "last_error": str(last_error)},
        ) from last_error

    def begin(self) -> None:
        """Start the repeating timer. Call after start() succeeded."""
        if self.running:
            return
        self._stopped.clear()
        self._timer_task = asyncio.create_task(self._timer(), name="price-refresh-timer")

    async def tick(self) -> CycleReport | None:
        """Run one guarded refresh cycle. Never raises on cycle failure."""
        if not self._guard.try_acquire():
            logger.warning("Skipping price refresh: previous cycle still in flight")
            return None

        started = time.monotonic()
        try:
            report = await self._engine.refresh_prices()
        except PriceCacheError as e:
            logger.error(
                "Price refresh cycle failed after %.2fs: %s (context=%s)",
                time.monotonic() - started,
                e,
                e.context,
            )
            self._track_unpriced(e)
            return None
        except Exception:
            logger.exception("Unexpected error in price refresh cycle")
            self._track_unpriced(None)
            return None
        finally:
            self._guard.release()

        self._track_unpriced(None)
        logger.info(
            "Updated price cache in %.2fs (cycle %d, %d assets)",
            time.monotonic() - started,
            report.timestamp,
            report.written,
        )
        return report

    async def stop(self) -> None:
        """Cancel the timer and wait for any in-flight cycle to finish."""
        self._stopped.set()
        if self._timer_task is not None:
            self._timer_task.cancel()
            await asyncio.gather(self._timer_task, return_exceptions=True)
            self._timer_task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def run_forever(self) -> None:
        """Initialize, then refresh until stop() is called or cancelled."""
        await self.start()
        self.begin()
        try:
            await self._stopped.wait()
        finally:
            await self.stop()

    def _track_unpriced(self, error: PriceCacheError | None) -> None:
        """Count consecutive cycles failing on the same unpriced assets.

        A feed that answers but keeps omitting the same keys stalls the whole
        universe; this separates that case from an outage in the logs.
        """
        if error is None or error.context.get("reason") != "missing_quotes":
            self._unpriced = ()
            self._unpriced_streak = 0
            return

        keys = tuple(error.context.get("assets", ()))
        self._unpriced_streak = self._unpriced_streak + 1 if keys == self._unpriced else 1
        self._unpriced = keys
        if self._unpriced_streak > 1:
            logger.error(
                "Same %d asset(s) unpriced for %d consecutive cycles, no prices "
                "written since: %s",
                len(keys),
                self._unpriced_streak,
                list(keys),
            )

    async def _timer(self) -> None:
        interval = self._config.refresh_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            task = asyncio.create_task(self.tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
