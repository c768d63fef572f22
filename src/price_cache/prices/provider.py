"""Price source and asset ranking protocols — the quote-side interface layer.

Architecture
------------
The engine never talks to a concrete feed. It depends on two narrow
capabilities:

    Ranking API → AssetRanking → list[AssetKey]   (once, at startup)
    Quote feed  → PriceSource  → QuoteBatch       (every refresh cycle)

- **PriceSource** prices a whole set of assets in one call, so all assets
  in a cycle are quoted together and none goes stale relative to the rest.

- **AssetRanking** names the top-N assets that make up the tracked
  universe.

How quotes are actually computed upstream is not this package's concern;
adding a feed means writing one class with ``get_quotes``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from price_cache.core.models import AssetKey, QuoteBatch


@runtime_checkable
class PriceSource(Protocol):
    """Returns current quotes for a set of assets."""

    async def get_quotes(self, keys: set[AssetKey]) -> QuoteBatch:
        """Price every requested key in a single call.

        Returns
        -------
        QuoteBatch
            ``prices`` for the keys that could be priced, ``missing`` for
            those that could not. Every requested key appears in exactly
            one of the two.

        Raises
        ------
        SourceUnavailable
            The feed could not be reached at all.
        """
        ...


@runtime_checkable
class AssetRanking(Protocol):
    """Supplies the external top-N ranking used to pick the universe."""

    async def top_assets(self, limit: int) -> list[AssetKey]:
        """Return at most ``limit`` asset keys, best-ranked first.

        Raises
        ------
        SourceUnavailable
            The ranking could not be fetched.
        """
        ...
