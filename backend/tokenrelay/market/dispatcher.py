"""Fan-out of decoded feed events to subscribed viewers."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from .assets import TRADE_HISTORY_SIZE
from .cache import QuoteCache
from .models import Channel, FeedEvent, PairPrice, PriceQuote, Trade, ViewerEvent
from .registry import SubscriptionRegistry
from .viewer import Viewer

logger = logging.getLogger(__name__)


class TradeHistory:
    """Most-recent-first ring of trades with a matching set of dedupe keys.

    The key set always holds exactly the keys of the retained trades, so the
    duplicate check looks back as far as the history does and no further.
    """

    def __init__(self, capacity: int = TRADE_HISTORY_SIZE) -> None:
        self._capacity = capacity
        self._trades: deque[Trade] = deque()
        self._keys: set[str] = set()

    def add(self, trade: Trade) -> bool:
        """Prepend a trade. Returns False (and stores nothing) for a duplicate."""
        if trade.dedupe_key in self._keys:
            return False
        if len(self._trades) >= self._capacity:
            evicted = self._trades.pop()
            self._keys.discard(evicted.dedupe_key)
        self._trades.appendleft(trade)
        self._keys.add(trade.dedupe_key)
        return True

    def merge(self, trades: Iterable[Trade]) -> int:
        """Fold in trades from another source, keeping newest-first by ``occurred_at``.

        Trades already held win over incoming duplicates. Returns how many
        incoming trades were kept after trimming to capacity.
        """
        incoming: list[Trade] = []
        seen = set(self._keys)
        for trade in trades:
            if trade.dedupe_key not in seen:
                seen.add(trade.dedupe_key)
                incoming.append(trade)
        if not incoming:
            return 0

        # Stable sort: on equal timestamps held trades stay ahead of incoming ones
        merged = sorted([*self._trades, *incoming], key=lambda t: t.occurred_at, reverse=True)
        kept = merged[: self._capacity]
        self._trades = deque(kept)
        self._keys = {t.dedupe_key for t in kept}
        return sum(1 for t in incoming if t.dedupe_key in self._keys)

    def __contains__(self, dedupe_key: str) -> bool:
        return dedupe_key in self._keys

    def __len__(self) -> int:
        return len(self._trades)

    def to_list(self) -> list[Trade]:
        return list(self._trades)


class FanoutDispatcher:
    """Routes FeedEvents from pool to asset(s) and delivers to viewers.

    ``dispatch`` is synchronous and only does ``put_nowait`` on viewer queues,
    so it never stalls the feed's receive loop. A pool backing several assets
    delivers to all of them.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        quote_cache: QuoteCache,
        history_size: int = TRADE_HISTORY_SIZE,
    ) -> None:
        self._registry = registry
        self._cache = quote_cache
        self._history_size = history_size
        self._histories: dict[str, TradeHistory] = {}
        self.delivered: int = 0

    def dispatch(self, event: FeedEvent) -> None:
        assets = self._registry.assets_for_pool(event.pool_address)
        if not assets:
            logger.debug("Event for unowned pool %s ignored", event.pool_address)
            return

        for asset_id in assets:
            if event.price is not None:
                self.publish_quote(self._build_quote(asset_id, event.price, event.received_at))
            if event.trade is not None:
                self.publish_trade(event.trade.for_asset(asset_id))

    def publish_quote(self, quote: PriceQuote) -> None:
        """Cache a quote and send it to the asset's quote viewers."""
        current = self._cache.update(quote)
        if current is not quote:
            return  # Older than what we already have
        self._deliver(
            self._registry.viewers_for(quote.asset_id, Channel.QUOTES),
            ViewerEvent(type="price_update", asset_id=quote.asset_id, data=quote),
        )

    def publish_trade(self, trade: Trade) -> bool:
        """Record a trade and send it to the asset's trade viewers.

        Returns False when the trade was a duplicate and nothing was sent.
        """
        if not self._history(trade.asset_id).add(trade):
            logger.debug("Duplicate trade %s for %s dropped", trade.dedupe_key, trade.asset_id)
            return False
        self._deliver(
            self._registry.viewers_for(trade.asset_id, Channel.TRADES),
            ViewerEvent(type="trade", asset_id=trade.asset_id, data=trade),
        )
        return True

    def seed_trades(self, asset_id: str, trades: Iterable[Trade]) -> list[Trade]:
        """Merge an HTTP snapshot into the history without delivering it.

        Streamed trades may already be there (they can arrive while the
        snapshot is being fetched); the result stays newest first.
        """
        history = self._history(asset_id)
        history.merge(trade.for_asset(asset_id) for trade in trades)
        return history.to_list()

    def history(self, asset_id: str) -> list[Trade]:
        history = self._histories.get(asset_id)
        return history.to_list() if history else []

    def forget(self, asset_id: str) -> None:
        """Drop per-asset state once nobody is subscribed any more."""
        self._histories.pop(asset_id, None)
        self._cache.remove(asset_id)

    # --- Internal ---

    def _history(self, asset_id: str) -> TradeHistory:
        history = self._histories.get(asset_id)
        if history is None:
            history = self._histories[asset_id] = TradeHistory(self._history_size)
        return history

    @staticmethod
    def _build_quote(asset_id: str, price: PairPrice, observed_at: float) -> PriceQuote:
        return PriceQuote(
            asset_id=asset_id,
            price_usd=price.price_usd,
            price_change_24h_pct=price.price_change_24h_pct,
            price_in_quote_asset=price.price_in_quote_asset,
            symbol=price.symbol,
            name=price.name,
            observed_at=observed_at,
        )

    def _deliver(self, viewers: list[Viewer], event: ViewerEvent) -> None:
        for viewer in viewers:
            try:
                if viewer.deliver(event):
                    self.delivered += 1
            except Exception:
                logger.exception("Delivery to viewer %s failed", viewer.viewer_id)
