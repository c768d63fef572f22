"""Pydantic data models — the cache's type contracts.

Prices are always ``decimal.Decimal``. Nothing in this package computes a
price or a percentage with binary floats.
"""

from __future__ import annotations

import re
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from price_cache.core.exceptions import PartialInitFailure

# --- Type Aliases ---

AssetKey = str
EpochMillis = int

NATIVE_ASSET_KEY: AssetKey = "XLM"

_ASSET_KEY_RE = re.compile(r"^[A-Za-z0-9]{1,12}(:[A-Za-z0-9]+)?$")


def normalize_asset_key(raw: str) -> AssetKey:
    """Canonicalize an asset identifier.

    ``native`` becomes ``XLM`` and the ``CODE-ISSUER`` form used by asset
    explorers becomes ``CODE:ISSUER``. Anything else is returned stripped.
    """
    key = raw.strip()
    if key.lower() == "native":
        return NATIVE_ASSET_KEY
    if ":" not in key and "-" in key:
        code, _, issuer = key.partition("-")
        key = f"{code}:{issuer}"
    return key


def is_valid_asset_key(key: str) -> bool:
    return bool(_ASSET_KEY_RE.match(key))


# --- Enumerations ---


class InitFailureKind(StrEnum):
    """Why a single asset failed to initialize."""

    SOURCE_UNAVAILABLE = "source_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"
    INVALID_ASSET = "invalid_asset"


class StoreBackend(StrEnum):
    """Supported time-series store backends."""

    REDIS = "redis"
    MEMORY = "memory"


# --- Time-Series Models ---


class TimeSeriesEntry(BaseModel):
    """One point in an asset's price series."""

    model_config = ConfigDict(frozen=True)

    timestamp: EpochMillis
    value: Decimal

    @field_validator("timestamp")
    @classmethod
    def timestamp_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"timestamp must be >= 0, got {v}")
        return v


class MultiAddEntry(BaseModel):
    """The unit batched into a single multi-write call."""

    model_config = ConfigDict(frozen=True)

    key: AssetKey
    timestamp: EpochMillis
    value: Decimal


class PriceCalculationResult(BaseModel):
    """One asset's evaluated quote before it is persisted."""

    model_config = ConfigDict(frozen=True)

    timestamp: EpochMillis
    price: Decimal


class TokenPriceData(BaseModel):
    """Read-side projection of an asset's cached price.

    ``percentage_price_change_24h`` is None when no entry exists at or
    before 24 hours ago.
    """

    model_config = ConfigDict(frozen=True)

    current_price: Decimal
    percentage_price_change_24h: Decimal | None = None


class QuoteBatch(BaseModel):
    """Result of one price-source call."""

    model_config = ConfigDict(frozen=True)

    prices: dict[AssetKey, Decimal] = Field(default_factory=dict)
    missing: frozenset[AssetKey] = frozenset()


# --- Lifecycle Reports ---


class InitFailure(BaseModel):
    """A single asset that could not be initialized."""

    model_config = ConfigDict(frozen=True)

    asset: AssetKey
    kind: InitFailureKind
    message: str = ""


class InitReport(BaseModel):
    """Outcome of PriceCacheEngine.initialize_cache()."""

    model_config = ConfigDict(frozen=True)

    initialized: int
    seeded: int = 0
    failures: list[InitFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_if_partial(self) -> None:
        """Raise PartialInitFailure when any asset failed to initialize."""
        if self.failures:
            raise PartialInitFailure(
                f"{len(self.failures)} asset(s) failed to initialize",
                context={"failures": {f.asset: f.kind.value for f in self.failures}},
            )


class CycleReport(BaseModel):
    """Outcome of one successful refresh cycle."""

    model_config = ConfigDict(frozen=True)

    timestamp: EpochMillis
    written: int
    skipped: list[AssetKey] = Field(default_factory=list)
    duration_ms: int = 0
