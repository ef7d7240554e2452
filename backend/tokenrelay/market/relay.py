"""Viewer-facing facade over the feed, registry and dispatcher."""

from __future__ import annotations

import logging
import time
from dataclasses import replace

from .assets import DEFAULT_CHAIN, TRADE_HISTORY_SIZE, normalize_asset_id
from .cache import QuoteCache
from .dispatcher import FanoutDispatcher
from .feed import DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_RECONNECT_DELAY, DEFAULT_WS_URL, FeedConnection
from .interface import QuoteGateway
from .models import Channel, FeedEvent, PriceQuote, Trade, ViewerEvent
from .registry import SubscriptionRegistry
from .resolver import PoolResolver
from .viewer import Viewer

logger = logging.getLogger(__name__)


class MarketRelay:
    """One upstream feed shared by any number of viewers.

    Lifecycle:
        relay = create_market_relay()
        await relay.start()
        viewer = Viewer()
        await relay.subscribe_quote("So111...", viewer)   # snapshot queued on viewer
        await relay.subscribe_trades("So111...", viewer)
        async for event in viewer.events(): ...
        await relay.disconnect(viewer)
        await relay.stop()

    Subscribe calls return once interest is registered and the initial
    snapshot is queued on the viewer; they never wait for the upstream feed.
    """

    def __init__(
        self,
        gateway: QuoteGateway,
        api_key: str = "",
        ws_url: str = DEFAULT_WS_URL,
        default_chain: str = DEFAULT_CHAIN,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        history_size: int = TRADE_HISTORY_SIZE,
    ) -> None:
        self._history_size = history_size
        self.gateway = gateway
        self.cache = QuoteCache()
        self.resolver = PoolResolver(gateway, default_chain=default_chain)
        self.feed = FeedConnection(
            ws_url,
            api_key,
            handler=self,
            heartbeat_interval=heartbeat_interval,
            reconnect_delay=reconnect_delay,
        )
        self.registry = SubscriptionRegistry(self.resolver, self.feed)
        self.dispatcher = FanoutDispatcher(self.registry, self.cache, history_size=history_size)

    async def start(self) -> None:
        await self.feed.start()
        logger.info("Market relay started")

    async def stop(self) -> None:
        await self.feed.stop()
        await self.gateway.close()
        logger.info("Market relay stopped")

    # --- Feed callbacks ---

    async def on_feed_open(self) -> None:
        await self.registry.replay()

    def on_feed_event(self, event: FeedEvent) -> None:
        self.dispatcher.dispatch(event)

    # --- Viewer API ---

    async def subscribe_quote(self, asset_id: str, viewer: Viewer) -> PriceQuote | None:
        """Stream quotes for an asset to a viewer, starting with the current one."""
        asset = normalize_asset_id(asset_id)
        await self.registry.subscribe(asset, viewer, Channel.QUOTES)
        quote = await self.get_quote(asset)
        if quote is not None:
            viewer.deliver(ViewerEvent(type="price_update", asset_id=asset, data=quote))
        return quote

    async def unsubscribe_quote(self, asset_id: str, viewer: Viewer) -> int:
        return await self._unsubscribe(asset_id, viewer, Channel.QUOTES)

    async def subscribe_trades(self, asset_id: str, viewer: Viewer) -> list[Trade]:
        """Stream trades for an asset to a viewer, starting with recent history."""
        asset = normalize_asset_id(asset_id)
        await self.registry.subscribe(asset, viewer, Channel.TRADES)

        history = self.dispatcher.history(asset)
        if not history:
            trades = await self.gateway.fetch_recent_trades(asset, self._history_size)
            if asset in self.registry:
                history = self.dispatcher.seed_trades(asset, trades)
            else:
                history = trades  # Unsubscribed while fetching; don't keep state
        if history:
            viewer.deliver(ViewerEvent(type="trades_snapshot", asset_id=asset, data=history))
        return history

    async def unsubscribe_trades(self, asset_id: str, viewer: Viewer) -> int:
        return await self._unsubscribe(asset_id, viewer, Channel.TRADES)

    async def disconnect(self, viewer: Viewer) -> None:
        """Close a viewer and release everything it was subscribed to."""
        viewer.close()
        for asset in await self.registry.drop_viewer(viewer):
            self.dispatcher.forget(asset)
        logger.debug("Viewer %s disconnected", viewer.viewer_id)

    async def get_quote(self, asset_id: str) -> PriceQuote | None:
        """Latest known quote: cached if streaming, otherwise one HTTP fetch."""
        asset = normalize_asset_id(asset_id)
        cached = self.cache.get(asset)
        if cached is not None:
            return cached
        requested_at = time.time()
        quote = await self.gateway.fetch_quote(asset)
        if quote is None or asset not in self.registry:
            return quote
        # An HTTP snapshot is never newer than its request
        if quote.observed_at > requested_at:
            quote = replace(quote, observed_at=requested_at)
        return self.cache.update(quote)

    def status(self) -> dict:
        return {
            "connection": self.feed.state.value,
            "reconnect_pending": self.feed.reconnect_pending,
            "feed": self.feed.stats.to_dict(),
            "pools": [pool.to_dict() for pool in self.registry.active_pools()],
            "subscriptions": self.registry.snapshot(),
            "cached_quotes": len(self.cache),
            "cache_version": self.cache.version,
            "quotes": {asset: quote.to_dict() for asset, quote in self.cache.get_all().items()},
            "delivered": self.dispatcher.delivered,
        }

    # --- Internal ---

    async def _unsubscribe(self, asset_id: str, viewer: Viewer, channel: Channel) -> int:
        asset = normalize_asset_id(asset_id)
        remaining = await self.registry.unsubscribe(asset, viewer, channel)
        if asset not in self.registry:
            self.dispatcher.forget(asset)
        return remaining
