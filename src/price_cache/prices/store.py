"""Time-series store protocol and its RedisTimeSeries implementation.

Values cross the wire as decimal strings. RedisTimeSeries keeps them as
doubles internally, so reads convert back through ``str`` to recover the
shortest decimal representation rather than the binary expansion.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import ConnectionError, RedisError, ResponseError, TimeoutError

from price_cache.core.config import StoreConfig
from price_cache.core.exceptions import StoreUnavailable
from price_cache.core.models import AssetKey, EpochMillis, MultiAddEntry, TimeSeriesEntry

logger = logging.getLogger(__name__)

_MISSING_KEY_MARKER = "does not exist"
_EXISTING_KEY_MARKER = "already exists"


@runtime_checkable
class TimeSeriesStore(Protocol):
    """Capability interface over a time-series key/value store.

    Missing keys and empty series are "no data" (None / []), never errors.
    Any failure to reach the store raises StoreUnavailable.
    """

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def ensure_series(self, key: AssetKey) -> bool:
        """Create the series for ``key`` if absent. Returns True if created."""
        ...

    async def write(self, key: AssetKey, timestamp: EpochMillis, value: Decimal) -> None:
        ...

    async def multi_write(self, entries: Sequence[MultiAddEntry]) -> None:
        """Write a whole batch in one call; any failed item fails the batch."""
        ...

    async def range_read(
        self, key: AssetKey, start: EpochMillis, end: EpochMillis
    ) -> list[TimeSeriesEntry]:
        """Entries with start <= timestamp <= end, ascending."""
        ...

    async def latest_before(self, key: AssetKey, end: EpochMillis) -> TimeSeriesEntry | None:
        """Newest entry with timestamp <= end, without reading the whole range."""
        ...

    async def latest(self, key: AssetKey) -> TimeSeriesEntry | None:
        ...


class RedisTimeSeriesStore:
    """RedisTimeSeries-backed implementation of TimeSeriesStore.

    Parameters
    ----------
    config : StoreConfig
        Connection parameters and series settings.
    client : redis.Redis | None
        Pre-built async client. Created from ``config`` on connect() if None.
    """

    def __init__(self, config: StoreConfig, client: redis.Redis | None = None) -> None:
        self._config = config
        self._client = client

    def series_key(self, key: AssetKey) -> str:
        return f"{self._config.key_prefix}{key}"

    async def connect(self) -> None:
        """Create the shared client (if needed) and verify it with PING."""
        if self._client is None:
            self._client = redis.Redis(
                host=self._config.host,
                port=self._config.port,
                client_name=self._config.client_name,
                socket_timeout=self._config.socket_timeout,
                socket_connect_timeout=self._config.socket_timeout,
                decode_responses=True,
            )
        try:
            await self._client.ping()
        except RedisError as e:
            raise self._unavailable("connect", e) from e
        logger.info(
            "Connected to Redis at %s:%d as %s",
            self._config.host,
            self._config.port,
            self._config.client_name,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ensure_series(self, key: AssetKey) -> bool:
        name = self.series_key(key)
        client = self._require_client()
        try:
            if await client.exists(name):
                return False
            await client.ts().create(
                name,
                retention_msecs=self._config.retention_ms,
                duplicate_policy="last",
                labels={"type": "price", "asset": key},
            )
        except ResponseError as e:
            # Lost a create race with another process
            if _EXISTING_KEY_MARKER in str(e):
                return False
            raise self._unavailable("ensure_series", e, keys=[key]) from e
        except RedisError as e:
            raise self._unavailable("ensure_series", e, keys=[key]) from e
        logger.debug("Created time series %s", name)
        return True

    async def write(self, key: AssetKey, timestamp: EpochMillis, value: Decimal) -> None:
        try:
            await self._require_client().ts().add(
                self.series_key(key), timestamp, str(value), duplicate_policy="last"
            )
        except RedisError as e:
            raise self._unavailable("write", e, keys=[key]) from e

    async def multi_write(self, entries: Sequence[MultiAddEntry]) -> None:
        if not entries:
            return
        tuples = [(self.series_key(e.key), e.timestamp, str(e.value)) for e in entries]
        try:
            replies = await self._require_client().ts().madd(tuples)
        except RedisError as e:
            raise self._unavailable(
                "multi_write", e, keys=[entry.key for entry in entries]
            ) from e

        # TS.MADD reports errors per item instead of failing the command
        failed = [
            entry.key
            for entry, reply in zip(entries, replies)
            if isinstance(reply, Exception)
        ]
        if failed:
            raise StoreUnavailable(
                f"Batch write rejected for {len(failed)} of {len(entries)} keys",
                context={"operation": "multi_write", "keys": failed},
            )

    async def range_read(
        self, key: AssetKey, start: EpochMillis, end: EpochMillis
    ) -> list[TimeSeriesEntry]:
        try:
            rows = await self._require_client().ts().range(self.series_key(key), start, end)
        except ResponseError as e:
            if _MISSING_KEY_MARKER in str(e):
                return []
            raise self._unavailable("range_read", e, keys=[key]) from e
        except RedisError as e:
            raise self._unavailable("range_read", e, keys=[key]) from e
        return [_to_entry(row) for row in rows or []]

    async def latest_before(self, key: AssetKey, end: EpochMillis) -> TimeSeriesEntry | None:
        # TS.REVRANGE ... COUNT 1 touches one sample however long the series is
        try:
            rows = await self._require_client().ts().revrange(
                self.series_key(key), 0, end, count=1
            )
        except ResponseError as e:
            if _MISSING_KEY_MARKER in str(e):
                return None
            raise self._unavailable("latest_before", e, keys=[key]) from e
        except RedisError as e:
            raise self._unavailable("latest_before", e, keys=[key]) from e
        if not rows:
            return None
        return _to_entry(rows[0])

    async def latest(self, key: AssetKey) -> TimeSeriesEntry | None:
        try:
            row = await self._require_client().ts().get(self.series_key(key))
        except ResponseError as e:
            if _MISSING_KEY_MARKER in str(e):
                return None
            raise self._unavailable("latest", e, keys=[key]) from e
        except RedisError as e:
            raise self._unavailable("latest", e, keys=[key]) from e
        if not row:
            return None
        return _to_entry(row)

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailable(
                "Redis client is not connected. Call connect() first.",
                context={"operation": "require_client"},
            )
        return self._client

    def _unavailable(
        self, operation: str, error: Exception, keys: list[AssetKey] | None = None
    ) -> StoreUnavailable:
        if isinstance(error, TimeoutError):
            reason = "timeout"
        elif isinstance(error, ConnectionError):
            reason = "connection"
        else:
            reason = "command"
        context: dict[str, Any] = {"operation": operation, "reason": reason}
        if keys:
            context["keys"] = keys
        return StoreUnavailable(f"Redis {operation} failed: {error}", context=context)


def _to_entry(row: Sequence[Any]) -> TimeSeriesEntry:
    return TimeSeriesEntry(timestamp=int(row[0]), value=Decimal(str(row[1])))
