"""price_cache.core — Foundation types, config, and exceptions."""

from price_cache.core.config import (
    CacheConfig,
    MetricsConfig,
    OnrampConfig,
    PriceCacheConfig,
    RankingConfig,
    SourceConfig,
    StoreConfig,
    load_config,
)
from price_cache.core.exceptions import (
    ConfigError,
    PartialInitFailure,
    PriceCacheError,
    SourceUnavailable,
    StartupError,
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
    StoreBackend,
    TimeSeriesEntry,
    TokenPriceData,
    is_valid_asset_key,
    normalize_asset_key,
)

__all__ = [
    # Type aliases
    "AssetKey",
    "EpochMillis",
    # Enums
    "InitFailureKind",
    "StoreBackend",
    # Time-series models
    "TimeSeriesEntry",
    "MultiAddEntry",
    "PriceCalculationResult",
    "TokenPriceData",
    "QuoteBatch",
    # Reports
    "InitFailure",
    "InitReport",
    "CycleReport",
    # Helpers
    "normalize_asset_key",
    "is_valid_asset_key",
    # Config
    "PriceCacheConfig",
    "CacheConfig",
    "StoreConfig",
    "RankingConfig",
    "SourceConfig",
    "MetricsConfig",
    "OnrampConfig",
    "load_config",
    # Exceptions
    "PriceCacheError",
    "ConfigError",
    "SourceUnavailable",
    "StoreUnavailable",
    "UnknownAsset",
    "PartialInitFailure",
    "StartupError",
]
