"""Prometheus range-query pass-through."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PrometheusQuery:
    """Issues ``range_query`` reads against a metrics backend.

    Errors are logged and reported as None; nothing is raised past
    query_range().
    """

    def __init__(
        self,
        prometheus_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = prometheus_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def __aenter__(self) -> PrometheusQuery:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def query_range(
        self, query: str, start: str, end: str, **extra: str
    ) -> dict[str, Any] | None:
        params = {"query": query, "start": start, "end": end, **extra}
        try:
            resp = await self._client.get(f"{self._url}/range_query", params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Prometheus HTTP error: %s %s",
                e.response.status_code,
                e.response.text[:200],
            )
        except httpx.RequestError as e:
            logger.error("Prometheus request error: %s", e)
        except ValueError as e:
            logger.error("Prometheus returned malformed JSON: %s", e)
        return None
