"""Price cache engine: universe setup, refresh cycles, and cached reads."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from decimal import Decimal

from price_cache.core.config import ONE_DAY_MS, CacheConfig
from price_cache.core.exceptions import (
    PriceCacheError,
    SourceUnavailable,
    StoreUnavailable,
    UnknownAsset,
)
from price_cache.core.models import (
    AssetKey,
    CycleReport,
    EpochMillis,
    InitFailure,
    InitFailureKind,
    InitReport,
    MultiAddEntry,
    PriceCalculationResult,
    QuoteBatch,
    TimeSeriesEntry,
    TokenPriceData,
    is_valid_asset_key,
    normalize_asset_key,
)
from price_cache.prices.provider import AssetRanking, PriceSource
from price_cache.prices.store import TimeSeriesStore

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)


def now_ms() -> EpochMillis:
    return time.time_ns() // 1_000_000


class PriceCacheEngine:
    """Owns the tracked universe and the only writer to its series.

    Parameters
    ----------
    store : TimeSeriesStore
        Shared store client. Reads and writes both go through it.
    source : PriceSource | None
        Quote feed, called once per cycle for the whole universe.
    ranking : AssetRanking | None
        Supplies the top-N keys at initialization. Without a source and a
        ranking the engine is a read-only view, populated via attach().
    config : CacheConfig
        Universe size, timeouts, and the 24h lookback tolerance.
    clock : Callable[[], int] | None
        Epoch-millisecond clock. Defaults to wall time.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        source: PriceSource | None = None,
        ranking: AssetRanking | None = None,
        config: CacheConfig | None = None,
        clock: Callable[[], EpochMillis] | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._ranking = ranking
        self._config = config or CacheConfig()
        self._clock = clock or now_ms
        self._universe: frozenset[AssetKey] = frozenset()
        self._last_timestamp: EpochMillis = -1

    @property
    def tracked_assets(self) -> tuple[AssetKey, ...]:
        return tuple(sorted(self._universe))

    def is_tracked(self, key: str) -> bool:
        return normalize_asset_key(key) in self._universe

    # --- Lifecycle ---

    async def initialize_cache(self) -> InitReport:
        """Pick the top-N universe, create missing series, seed empty ones.

        One asset failing does not stop the others. If none initialize, the
        dominant error is raised so startup aborts.
        """
        _, ranking = self._require_writer()
        try:
            ranked = await asyncio.wait_for(
                ranking.top_assets(self._config.universe_size),
                timeout=self._config.fetch_timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise SourceUnavailable(
                "Asset ranking timed out",
                context={"timeout_ms": self._config.fetch_timeout_ms},
            ) from e

        failures: list[InitFailure] = []
        candidates: list[AssetKey] = []
        for raw in ranked:
            key = normalize_asset_key(raw)
            if not is_valid_asset_key(key):
                failures.append(
                    InitFailure(
                        asset=raw,
                        kind=InitFailureKind.INVALID_ASSET,
                        message=f"Malformed asset key: {raw!r}",
                    )
                )
                continue
            if key not in candidates:
                candidates.append(key)
        candidates = candidates[: self._config.universe_size]

        ready: list[AssetKey] = []
        unseeded: list[AssetKey] = []
        newest = self._last_timestamp
        for key in candidates:
            try:
                created = await self._store.ensure_series(key)
                latest = None if created else await self._store.latest(key)
            except StoreUnavailable as e:
                logger.error("Failed to prepare series for %s: %s", key, e)
                failures.append(_failure(key, InitFailureKind.STORE_UNAVAILABLE, e))
                continue
            if latest is None:
                unseeded.append(key)
            else:
                ready.append(key)
                newest = max(newest, latest.timestamp)
        self._last_timestamp = newest

        seeded = await self._seed(unseeded, failures) if unseeded else []
        ready.extend(seeded)

        if not ready:
            kinds = {f.kind for f in failures}
            error_cls = (
                StoreUnavailable
                if InitFailureKind.STORE_UNAVAILABLE in kinds
                else SourceUnavailable
            )
            raise error_cls(
                "Price cache initialization failed for every asset",
                context={"failures": {f.asset: f.kind.value for f in failures}},
            )

        self._universe = frozenset(ready)
        for failure in failures:
            logger.warning(
                "Asset %s not tracked (%s): %s",
                failure.asset,
                failure.kind.value,
                failure.message,
            )
        logger.info(
            "Initialized price cache with %d assets (%d seeded, %d failed)",
            len(ready),
            len(seeded),
            len(failures),
        )
        return InitReport(initialized=len(ready), seeded=len(seeded), failures=failures)

    async def attach(self, keys: list[str]) -> tuple[AssetKey, ...]:
        """Track keys whose series already hold data, without writing.

        For readers sharing a store with a running worker. Keys that are
        malformed or have no entries stay untracked. Returns the keys
        attached by this call.
        """
        attached: list[AssetKey] = []
        for raw in keys:
            key = normalize_asset_key(raw)
            if not is_valid_asset_key(key):
                continue
            latest = await self._store.latest(key)
            if latest is None:
                continue
            attached.append(key)
            self._last_timestamp = max(self._last_timestamp, latest.timestamp)
        self._universe = self._universe | frozenset(attached)
        return tuple(attached)

    async def _seed(
        self, keys: list[AssetKey], failures: list[InitFailure]
    ) -> list[AssetKey]:
        """Write a first entry for each key. Returns the keys that got one."""
        try:
            batch = await self._fetch_quotes(set(keys))
        except SourceUnavailable as e:
            logger.error("Failed to fetch seed quotes for %d assets: %s", len(keys), e)
            failures.extend(_failure(k, InitFailureKind.SOURCE_UNAVAILABLE, e) for k in keys)
            return []

        priced = [k for k in keys if k in batch.prices]
        for key in keys:
            if key not in batch.prices:
                failures.append(
                    InitFailure(
                        asset=key,
                        kind=InitFailureKind.SOURCE_UNAVAILABLE,
                        message="No quote available",
                    )
                )
        if not priced:
            return []

        timestamp = self._next_timestamp()
        entries = [
            MultiAddEntry(key=k, timestamp=timestamp, value=batch.prices[k]) for k in priced
        ]
        try:
            await self._write_batch(entries)
        except StoreUnavailable as e:
            logger.error("Failed to write seed entries: %s", e)
            failures.extend(_failure(k, InitFailureKind.STORE_UNAVAILABLE, e) for k in priced)
            return []
        return priced

    async def refresh_prices(self) -> CycleReport:
        """Run one refresh cycle over the whole universe.

        Quotes are fetched in one call, stamped with one shared timestamp,
        and written in one batch. A failed fetch writes nothing. There is no
        retry here; the next scheduled cycle is the retry.

        Raises
        ------
        SourceUnavailable
            The fetch failed, timed out, or (when complete quotes are
            required) left some assets unpriced.
        StoreUnavailable
            The batch write failed or timed out.
        """
        self._require_writer()
        if not self._universe:
            raise PriceCacheError("Price cache is not initialized")

        started = time.monotonic()
        batch = await self._fetch_quotes(set(self._universe))

        missing = sorted(self._universe - batch.prices.keys())
        if missing and self._config.require_complete_quotes:
            raise SourceUnavailable(
                f"No quote for {len(missing)} tracked asset(s)",
                context={"assets": missing, "reason": "missing_quotes"},
            )

        # Taken after the fetch so slow feeds never produce out-of-order stamps
        timestamp = self._next_timestamp()
        results = {
            key: PriceCalculationResult(timestamp=timestamp, price=price)
            for key, price in batch.prices.items()
            if key in self._universe
        }
        entries = [
            MultiAddEntry(key=key, timestamp=result.timestamp, value=result.price)
            for key, result in sorted(results.items())
        ]
        await self._write_batch(entries)

        if missing:
            logger.warning("Cycle %d skipped unpriced assets: %s", timestamp, missing)
        return CycleReport(
            timestamp=timestamp,
            written=len(entries),
            skipped=missing,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    # --- Reads ---

    async def get_current_price(self, key: str) -> TimeSeriesEntry | None:
        """Latest cached entry, or None when the series is still empty."""
        return await self._store.latest(self._require_tracked(key))

    async def get_price_change_24h(self, key: str) -> Decimal | None:
        """Percentage change against the nearest entry at or before 24h ago.

        None when there is no current entry, no entry that old, or the old
        price is zero.
        """
        tracked = self._require_tracked(key)
        current = await self._store.latest(tracked)
        if current is None:
            return None
        return await self._change_24h(tracked, current)

    async def get_price(self, key: str) -> TokenPriceData | None:
        """Current price and 24h change together, or None with no data."""
        tracked = self._require_tracked(key)
        current = await self._store.latest(tracked)
        if current is None:
            return None
        return TokenPriceData(
            current_price=current.value,
            percentage_price_change_24h=await self._change_24h(tracked, current),
        )

    async def _change_24h(self, key: AssetKey, current: TimeSeriesEntry) -> Decimal | None:
        bound = self._clock() - (ONE_DAY_MS - self._config.day_threshold_ms)
        if bound < 0:
            return None
        past = await self._store.latest_before(key, bound)
        if past is None:
            logger.debug(
                "Token %s history is shorter than 24h, skipping %% change calculation.",
                key,
            )
            return None
        if past.value == 0:
            logger.warning("Token %s has a zero price at %d", key, past.timestamp)
            return None
        return (current.value - past.value) / past.value * _HUNDRED

    # --- Internals ---

    def _require_tracked(self, key: str) -> AssetKey:
        normalized = normalize_asset_key(key)
        if normalized not in self._universe:
            raise UnknownAsset(f"Asset is not tracked: {key}", context={"asset": key})
        return normalized

    def _require_writer(self) -> tuple[PriceSource, AssetRanking]:
        if self._source is None or self._ranking is None:
            raise PriceCacheError(
                "Engine is read-only: a price source and an asset ranking are "
                "required to initialize or refresh"
            )
        return self._source, self._ranking

    def _next_timestamp(self) -> EpochMillis:
        timestamp = max(self._clock(), self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    async def _fetch_quotes(self, keys: set[AssetKey]) -> QuoteBatch:
        try:
            return await asyncio.wait_for(
                self._source.get_quotes(keys),
                timeout=self._config.fetch_timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise SourceUnavailable(
                "Price source timed out",
                context={"assets": sorted(keys), "timeout_ms": self._config.fetch_timeout_ms},
            ) from e

    async def _write_batch(self, entries: list[MultiAddEntry]) -> None:
        try:
            await asyncio.wait_for(
                self._store.multi_write(entries),
                timeout=self._config.write_timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(
                "Batch write timed out",
                context={
                    "operation": "multi_write",
                    "timeout_ms": self._config.write_timeout_ms,
                },
            ) from e


def _failure(key: AssetKey, kind: InitFailureKind, error: Exception) -> InitFailure:
    return InitFailure(asset=key, kind=kind, message=str(error))
