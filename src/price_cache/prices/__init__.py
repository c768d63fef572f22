"""Quote-side adapters and time-series storage.

Architecture
------------
The engine sees three capabilities and nothing concrete:

    AssetRanking → top-N keys      (startup)
    PriceSource  → QuoteBatch      (every cycle)
    TimeSeriesStore ← MultiAddEntry batch

Built-in implementations:

- ``HttpPriceSource``: JSON quote endpoint pricing many assets per call.
- ``StellarExpertRanking``: StellarExpert asset directory, by rating.
- ``RedisTimeSeriesStore``: RedisTimeSeries over ``redis.asyncio``.
- ``InMemoryTimeSeriesStore``: in-process store for development and tests.
"""

from price_cache.prices.http import HttpPriceSource, StellarExpertRanking
from price_cache.prices.memory import InMemoryTimeSeriesStore
from price_cache.prices.provider import AssetRanking, PriceSource
from price_cache.prices.store import RedisTimeSeriesStore, TimeSeriesStore

__all__ = [
    # Protocols
    "AssetRanking",
    "PriceSource",
    "TimeSeriesStore",
    # HTTP
    "HttpPriceSource",
    "StellarExpertRanking",
    # Stores
    "RedisTimeSeriesStore",
    "InMemoryTimeSeriesStore",
]
