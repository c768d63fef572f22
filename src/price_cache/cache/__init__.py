"""Price cache engine, its scheduler, and the single-flight guard."""

from price_cache.cache.engine import PriceCacheEngine, now_ms
from price_cache.cache.guard import SingleFlight
from price_cache.cache.scheduler import PriceCacheScheduler

__all__ = [
    "PriceCacheEngine",
    "PriceCacheScheduler",
    "SingleFlight",
    "now_ms",
]
