"""In-process time-series store, used in development mode and tests."""

from __future__ import annotations

import asyncio
import bisect
from collections.abc import Sequence
from decimal import Decimal

from price_cache.core.exceptions import StoreUnavailable
from price_cache.core.models import AssetKey, EpochMillis, MultiAddEntry, TimeSeriesEntry


class InMemoryTimeSeriesStore:
    """Dict-of-sorted-lists implementation of TimeSeriesStore.

    Writes to a series that was never created are rejected, as a
    RedisTimeSeries ``TS.MADD`` against a missing key would be. Batches are
    all-or-nothing. Writing an existing timestamp replaces its value.
    """

    def __init__(self) -> None:
        self._series: dict[AssetKey, list[TimeSeriesEntry]] = {}
        self._lock = asyncio.Lock()
        self.multi_write_calls = 0

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ensure_series(self, key: AssetKey) -> bool:
        async with self._lock:
            if key in self._series:
                return False
            self._series[key] = []
            return True

    async def write(self, key: AssetKey, timestamp: EpochMillis, value: Decimal) -> None:
        async with self._lock:
            self._check_exists([key])
            self._insert(key, TimeSeriesEntry(timestamp=timestamp, value=value))

    async def multi_write(self, entries: Sequence[MultiAddEntry]) -> None:
        async with self._lock:
            self.multi_write_calls += 1
            self._check_exists([e.key for e in entries])
            for e in entries:
                self._insert(e.key, TimeSeriesEntry(timestamp=e.timestamp, value=e.value))

    async def range_read(
        self, key: AssetKey, start: EpochMillis, end: EpochMillis
    ) -> list[TimeSeriesEntry]:
        series = self._series.get(key, [])
        return [e for e in series if start <= e.timestamp <= end]

    async def latest_before(self, key: AssetKey, end: EpochMillis) -> TimeSeriesEntry | None:
        series = self._series.get(key, [])
        idx = bisect.bisect_right([e.timestamp for e in series], end)
        return series[idx - 1] if idx else None

    async def latest(self, key: AssetKey) -> TimeSeriesEntry | None:
        series = self._series.get(key)
        return series[-1] if series else None

    def _check_exists(self, keys: list[AssetKey]) -> None:
        missing = [k for k in keys if k not in self._series]
        if missing:
            raise StoreUnavailable(
                f"Write to {len(missing)} uncreated series rejected",
                context={"operation": "multi_write", "keys": missing},
            )

    def _insert(self, key: AssetKey, entry: TimeSeriesEntry) -> None:
        series = self._series[key]
        stamps = [e.timestamp for e in series]
        idx = bisect.bisect_left(stamps, entry.timestamp)
        if idx < len(series) and series[idx].timestamp == entry.timestamp:
            series[idx] = entry
        else:
            series.insert(idx, entry)
