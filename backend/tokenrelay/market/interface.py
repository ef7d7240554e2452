"""Abstract interface for the quote provider."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import PoolListing, PriceQuote, Trade


class QuoteGateway(ABC):
    """Contract for point-in-time queries against the market-data provider.

    The gateway absorbs provider instability: missing fields are defaulted and
    failed requests degrade to ``None`` / ``[]`` / ``0.0``. The one exception
    is pool discovery, which raises ``ProviderError`` so the resolver can
    apply its own fallback.

    Lifecycle:
        gateway = MobulaGateway(api_key=...)
        quote = await gateway.fetch_quote("So111...")
        trades = await gateway.fetch_recent_trades("So111...", limit=20)
        # ... app shutting down ...
        await gateway.close()
    """

    @abstractmethod
    async def fetch_quote(self, asset_id: str) -> PriceQuote | None:
        """Current price for an asset, or None if the provider has none."""

    @abstractmethod
    async def fetch_recent_trades(self, asset_id: str, limit: int = 20) -> list[Trade]:
        """Most recent trades, newest first. Empty on any failure."""

    @abstractmethod
    async def discover_pools(self, asset_id: str, chain: str) -> list[PoolListing]:
        """All pools the provider knows for an asset on a chain.

        Raises ProviderError when the provider cannot be reached or answers
        with an error status.
        """

    @abstractmethod
    async def fetch_reference_price(self) -> float:
        """USD price of the reference (native) asset, 0.0 if unavailable."""

    @abstractmethod
    async def close(self) -> None:
        """Release network resources. Safe to call multiple times."""
