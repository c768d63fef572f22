"""HTTP implementations of the quote-side protocols.

- ``HttpPriceSource`` reads a JSON quote endpoint that prices many assets
  per request.
- ``StellarExpertRanking`` pages through the StellarExpert asset directory
  (sorted by rating) to pick the tracked universe.

Both share one ``httpx.AsyncClient`` for their lifetime. Use via
``async with``.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from price_cache.core.config import RankingConfig, SourceConfig
from price_cache.core.exceptions import SourceUnavailable
from price_cache.core.models import (
    NATIVE_ASSET_KEY,
    AssetKey,
    QuoteBatch,
    normalize_asset_key,
)

logger = logging.getLogger(__name__)

_USER_AGENT = "price-cache/0.1"
_ASSET_DIRECTORY_PATH = "/explorer/public/asset"
_PAGE_SIZE = 50
_MAX_PAGES = 40

# Bare codes the directory lists ahead of issued assets
_SHORTHAND_CODES = frozenset({"XLM", "USDC"})


class HttpPriceSource:
    """Fetches quotes from a JSON endpoint.

    Request: ``GET {url}?assets=K1,K2,...``
    Response: ``{"prices": {"K1": "0.1123", ...}}``. Keys absent from the
    response, or with a value that is not a valid decimal, are reported as
    missing.
    """

    def __init__(self, config: SourceConfig, client: httpx.AsyncClient | None = None) -> None:
        if not config.url:
            raise ValueError("SourceConfig.url is required for HttpPriceSource")
        self._url = config.url
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": _USER_AGENT},
            timeout=httpx.Timeout(config.timeout),
        )

    async def __aenter__(self) -> HttpPriceSource:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def get_quotes(self, keys: set[AssetKey]) -> QuoteBatch:
        if not keys:
            return QuoteBatch()

        params = {"assets": ",".join(sorted(keys))}
        try:
            resp = await self._client.get(self._url, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(
                f"Quote endpoint returned HTTP {e.response.status_code}",
                context={"url": self._url, "status_code": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            raise SourceUnavailable(
                f"Quote endpoint request failed: {e}", context={"url": self._url}
            ) from e
        except ValueError as e:
            raise SourceUnavailable(
                "Quote endpoint returned malformed JSON", context={"url": self._url}
            ) from e

        raw_prices = payload.get("prices") if isinstance(payload, dict) else None
        if not isinstance(raw_prices, dict):
            raise SourceUnavailable(
                "Quote response has no 'prices' mapping", context={"url": self._url}
            )

        prices: dict[AssetKey, Decimal] = {}
        for key in keys:
            price = _parse_price(raw_prices.get(key))
            if price is not None:
                prices[key] = price

        missing = frozenset(keys - prices.keys())
        if missing:
            logger.warning("No quote for %d asset(s): %s", len(missing), sorted(missing))
        return QuoteBatch(prices=prices, missing=missing)


class StellarExpertRanking:
    """Top-N asset ranking from the StellarExpert asset directory.

    The native asset is always ranked first. Records are resolved from
    ``tomlInfo.code``/``tomlInfo.issuer`` when present, else from the
    ``asset`` field (``CODE-ISSUER[-TYPE]``).
    """

    def __init__(self, config: RankingConfig, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = config.base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": _USER_AGENT},
            timeout=httpx.Timeout(config.timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> StellarExpertRanking:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def top_assets(self, limit: int) -> list[AssetKey]:
        keys: list[AssetKey] = [NATIVE_ASSET_KEY]
        seen = {NATIVE_ASSET_KEY}
        url: str | None = (
            f"{self._base_url}{_ASSET_DIRECTORY_PATH}"
            f"?sort=rating&order=desc&limit={_PAGE_SIZE}"
        )

        pages = 0
        while url and len(keys) < limit and pages < _MAX_PAGES:
            data = await self._fetch_page(url)
            pages += 1
            records = data.get("_embedded", {}).get("records", [])
            if not records:
                break
            for record in records:
                key = _record_to_key(record)
                if key is None or key in seen:
                    continue
                seen.add(key)
                keys.append(key)
                if len(keys) >= limit:
                    break
            href = data.get("_links", {}).get("next", {}).get("href")
            url = f"{self._base_url}{href}" if href else None

        logger.info("Fetched %d total tokens", len(keys))
        return keys[:limit]

    async def _fetch_page(self, url: str) -> dict[str, Any]:
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(
                f"Asset ranking returned HTTP {e.response.status_code}",
                context={"url": url, "status_code": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            raise SourceUnavailable(
                f"Asset ranking request failed: {e}", context={"url": url}
            ) from e
        except ValueError as e:
            raise SourceUnavailable(
                "Asset ranking returned malformed JSON", context={"url": url}
            ) from e


def _record_to_key(record: dict[str, Any]) -> AssetKey | None:
    toml = record.get("tomlInfo") or {}
    if toml.get("code") and toml.get("issuer"):
        return f"{toml['code']}:{toml['issuer']}"

    asset = record.get("asset")
    if not asset or asset in _SHORTHAND_CODES:
        return None
    parts = asset.split("-")
    if len(parts) < 2:
        return normalize_asset_key(asset)
    return f"{parts[0]}:{parts[1]}"


def _parse_price(raw: Any) -> Decimal | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        price = Decimal(str(raw))
    except InvalidOperation:
        return None
    if not price.is_finite() or price < 0:
        return None
    return price
