"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from price_cache.core.exceptions import ConfigError
from price_cache.core.models import StoreBackend

ONE_DAY_MS = 24 * 60 * 60 * 1000


class CacheConfig(BaseModel):
    """Engine and scheduler behaviour."""

    model_config = ConfigDict(frozen=True)

    universe_size: int = 50
    refresh_interval_ms: int = 60_000
    fetch_timeout_ms: int = 10_000
    write_timeout_ms: int = 10_000
    day_threshold_ms: int = 0
    require_complete_quotes: bool = True
    init_retries: int = 3
    init_retry_delay_ms: int = 30_000

    @field_validator("universe_size", "refresh_interval_ms", "init_retries")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("fetch_timeout_ms", "write_timeout_ms")
    @classmethod
    def timeout_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("timeouts must be >= 1 ms")
        return v

    @field_validator("day_threshold_ms")
    @classmethod
    def threshold_within_day(cls, v: int) -> int:
        if v < 0 or v >= ONE_DAY_MS:
            raise ValueError("day_threshold_ms must be in [0, 86400000)")
        return v

    @field_validator("init_retry_delay_ms")
    @classmethod
    def delay_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("init_retry_delay_ms must be >= 0")
        return v


class StoreConfig(BaseModel):
    """Time-series store connection configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StoreBackend = StoreBackend.REDIS
    host: str = "localhost"
    port: int = 6379
    client_name: str = "price-cache"
    key_prefix: str = "ts:price:"
    retention_ms: int = 2 * ONE_DAY_MS
    socket_timeout: float = 5.0

    @field_validator("port")
    @classmethod
    def port_in_range(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("retention_ms")
    @classmethod
    def retention_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retention_ms must be >= 0 (0 disables expiry)")
        return v


class RankingConfig(BaseModel):
    """Asset ranking API used to pick the tracked universe."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.stellar.expert"
    timeout: float = 15.0


class SourceConfig(BaseModel):
    """Quote endpoint for the HTTP price source."""

    model_config = ConfigDict(frozen=True)

    url: str | None = None
    timeout: float = 10.0


class MetricsConfig(BaseModel):
    """Metrics backend used by the range-query helper."""

    model_config = ConfigDict(frozen=True)

    prometheus_url: str | None = None


class OnrampConfig(BaseModel):
    """Credentials for the onramp session-token helper."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    api_secret: str | None = None

    @model_validator(mode="after")
    def key_and_secret_together(self) -> OnrampConfig:
        if (self.api_key is None) != (self.api_secret is None):
            raise ValueError("api_key and api_secret must be set together")
        return self


class PriceCacheConfig(BaseModel):
    """Root configuration for the price-cache worker."""

    model_config = ConfigDict(frozen=True)

    cache: CacheConfig = CacheConfig()
    store: StoreConfig = StoreConfig()
    ranking: RankingConfig = RankingConfig()
    source: SourceConfig = SourceConfig()
    metrics: MetricsConfig = MetricsConfig()
    onramp: OnrampConfig = OnrampConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PRICE_CACHE_",
) -> PriceCacheConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (PRICE_CACHE_STORE__HOST, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        PRICE_CACHE_CACHE__UNIVERSE_SIZE=25  ->  cache.universe_size = 25
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return PriceCacheConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("PRICE_CACHE_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from PRICE_CACHE_CONFIG not found: {env_path}",
                context={"field": "PRICE_CACHE_CONFIG", "value": env_path},
            )
        return p

    default = Path("price-cache.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # PRICE_CACHE_CONFIG points at the YAML file, it is not a setting
        if parts == ["config"]:
            continue

        target = result
        for part in parts[:-1]:
            existing = target.get(part)
            if not isinstance(existing, dict):
                existing = dict(existing or {})
                target[part] = existing
            target = existing
        target[parts[-1]] = _auto_cast(value)

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
