"""In-memory fakes for market relay tests.

``FakeGateway`` answers from in-memory tables; ``RecordingFeed`` stands in
for FeedConnection and tracks the pool set the provider would believe it is
subscribed to.
"""

import asyncio

from tokenrelay.market.errors import ProviderError
from tokenrelay.market.interface import QuoteGateway
from tokenrelay.market.models import PoolListing, PoolRef, PriceQuote, Trade


class FakeGateway(QuoteGateway):
    def __init__(self) -> None:
        self.pools: dict[str, list[PoolListing]] = {}
        self.quotes: dict[str, PriceQuote] = {}
        self.trades: dict[str, list[Trade]] = {}
        self.reference_price = 150.0
        self.fail_discovery = False
        self.discovery_delay = 0.0
        self.quote_delay = 0.0
        self.discover_calls: list[str] = []
        self.quote_calls: list[str] = []
        self.trade_calls: list[str] = []
        self.closed = False

    async def fetch_quote(self, asset_id: str) -> PriceQuote | None:
        self.quote_calls.append(asset_id)
        if self.quote_delay:
            await asyncio.sleep(self.quote_delay)
        return self.quotes.get(asset_id)

    async def fetch_recent_trades(self, asset_id: str, limit: int = 20) -> list[Trade]:
        self.trade_calls.append(asset_id)
        return list(self.trades.get(asset_id, []))[:limit]

    async def discover_pools(self, asset_id: str, chain: str) -> list[PoolListing]:
        self.discover_calls.append(asset_id)
        if self.discovery_delay:
            await asyncio.sleep(self.discovery_delay)
        if self.fail_discovery:
            raise ProviderError("pairs endpoint down", status=503)
        return list(self.pools.get(asset_id, []))

    async def fetch_reference_price(self) -> float:
        return self.reference_price

    async def close(self) -> None:
        self.closed = True


class RecordingFeed:
    """Upstream stand-in: records frames and mimics the provider's pool set."""

    def __init__(self, is_open: bool = True) -> None:
        self.is_open = is_open
        self.connect_calls = 0
        self.frames: list[tuple[str, list[PoolRef]]] = []
        self.upstream: set[PoolRef] = set()

    def connect(self) -> None:
        self.connect_calls += 1

    async def subscribe_pools(self, pools: list[PoolRef]) -> bool:
        if not self.is_open:
            return False
        self.frames.append(("market-details", list(pools)))
        self.upstream = set(pools)
        return True

    async def unsubscribe_pools(self, pools: list[PoolRef]) -> bool:
        if not self.is_open:
            return False
        self.frames.append(("unsubscribe", list(pools)))
        self.upstream -= set(pools)
        return True

    def drop(self) -> None:
        """Simulate a lost connection: the provider forgets everything."""
        self.is_open = False
        self.upstream = set()


def pool(address: str, chain: str = "solana") -> PoolRef:
    return PoolRef(chain=chain, address=address)


def listing(address: str, liquidity: float) -> PoolListing:
    return PoolListing(pool=pool(address), liquidity=liquidity)


def make_trade(key: str, asset_id: str = "X", occurred_at: float = 1_700_000_000.0) -> Trade:
    return Trade(
        dedupe_key=key,
        asset_id=asset_id,
        tx_hash=key.split(":")[0],
        amount=1.0,
        occurred_at=occurred_at,
    )
