"""Shared pytest fixtures for price-cache."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from price_cache.cache.engine import PriceCacheEngine
from price_cache.core.config import CacheConfig
from price_cache.core.exceptions import SourceUnavailable
from price_cache.core.models import AssetKey, QuoteBatch
from price_cache.prices.memory import InMemoryTimeSeriesStore

USDC = "USDC:GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakePriceSource:
    """Serves quotes from a mutable dict and records every call."""

    def __init__(self, prices: dict[AssetKey, Decimal] | None = None) -> None:
        self.prices = dict(prices or {})
        self.calls: list[set[AssetKey]] = []
        self.error: Exception | None = None
        self.delay: float = 0.0

    async def get_quotes(self, keys: set[AssetKey]) -> QuoteBatch:
        self.calls.append(set(keys))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        found = {k: self.prices[k] for k in keys if k in self.prices}
        return QuoteBatch(prices=found, missing=frozenset(keys - found.keys()))


class FakeRanking:
    def __init__(self, keys: list[AssetKey]) -> None:
        self.keys = list(keys)
        self.error: Exception | None = None

    async def top_assets(self, limit: int) -> list[AssetKey]:
        if self.error is not None:
            raise self.error
        return self.keys[:limit]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(now=0)


@pytest.fixture
def store() -> InMemoryTimeSeriesStore:
    return InMemoryTimeSeriesStore()


@pytest.fixture
def source() -> FakePriceSource:
    return FakePriceSource({"XLM": Decimal("0.10"), USDC: Decimal("1.00")})


@pytest.fixture
def ranking() -> FakeRanking:
    return FakeRanking(["XLM", USDC])


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(
        fetch_timeout_ms=500,
        write_timeout_ms=500,
        init_retries=2,
        init_retry_delay_ms=0,
    )


@pytest.fixture
def engine(store, source, ranking, cache_config, clock) -> PriceCacheEngine:
    return PriceCacheEngine(store, source, ranking, cache_config, clock=clock)


@pytest.fixture
def source_down() -> SourceUnavailable:
    return SourceUnavailable("feed down", context={"url": "http://quotes.test"})


@pytest.fixture
def make_source():
    return FakePriceSource


@pytest.fixture
def make_ranking():
    return FakeRanking
