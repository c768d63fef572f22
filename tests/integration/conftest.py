"""Integration test fixtures: real adapters over mocked HTTP, in-memory store."""

from __future__ import annotations

import httpx
import pytest
import respx

from price_cache.core.config import RankingConfig, SourceConfig
from price_cache.prices.http import HttpPriceSource, StellarExpertRanking

ISSUER = "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"


class QuoteFeed:
    """Mutable quote table served by the mocked quote endpoint."""

    def __init__(self) -> None:
        self.prices: dict[str, str] = {}
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        requested = request.url.params["assets"].split(",")
        return httpx.Response(
            200, json={"prices": {k: self.prices[k] for k in requested if k in self.prices}}
        )


@pytest.fixture
def quote_feed() -> QuoteFeed:
    return QuoteFeed()


@pytest.fixture
def mocked_http(quote_feed):
    with respx.mock(assert_all_called=False) as router:
        router.get(host="quotes.test", path="/prices").mock(side_effect=quote_feed)
        router.get(host="expert.test", path="/explorer/public/asset").mock(
            return_value=httpx.Response(
                200,
                json={
                    "_embedded": {
                        "records": [
                            {"asset": "XLM"},
                            {"asset": f"USDC-{ISSUER}-1"},
                        ]
                    },
                    "_links": {},
                },
            )
        )
        yield router


@pytest.fixture
async def http_adapters(mocked_http):
    async with HttpPriceSource(SourceConfig(url="http://quotes.test/prices")) as source:
        async with StellarExpertRanking(RankingConfig(base_url="https://expert.test")) as ranking:
            yield source, ranking
