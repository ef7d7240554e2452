"""Data models for the market relay."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class Channel(str, Enum):
    """What a viewer wants to hear about for an asset."""

    QUOTES = "quotes"
    TRADES = "trades"


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: Any) -> TradeSide:
        """Provider sends free-form strings; anything but 'sell' counts as a buy."""
        return cls.SELL if str(value).lower() == "sell" else cls.BUY


def _non_negative(value: float) -> float:
    if value is None or math.isnan(value) or value < 0:
        return 0.0
    return float(value)


def make_dedupe_key(tx_hash: str, discriminator: Any) -> str:
    """Identity of a trade: transaction hash plus the upstream sequence discriminator."""
    return f"{tx_hash}:{discriminator}"


@dataclass(frozen=True, slots=True)
class PoolRef:
    """A concrete trading venue the upstream feed can subscribe on."""

    chain: str
    address: str

    def to_dict(self) -> dict:
        """Upstream wire shape."""
        return {"blockchain": self.chain, "address": self.address}


@dataclass(frozen=True, slots=True)
class PoolListing:
    """A pool returned by discovery, with the liquidity used for ranking."""

    pool: PoolRef
    liquidity: float = 0.0


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """Immutable price snapshot for one asset."""

    asset_id: str
    price_usd: float
    price_change_24h_pct: float = 0.0
    price_in_quote_asset: float | None = None
    symbol: str = ""
    name: str = ""
    observed_at: float = field(default_factory=time.time)  # Unix seconds

    def __post_init__(self) -> None:
        object.__setattr__(self, "price_usd", _non_negative(self.price_usd))
        change = self.price_change_24h_pct
        if change is None or math.isnan(change):
            change = 0.0
        object.__setattr__(self, "price_change_24h_pct", round(change, 2))

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat' over the last 24h."""
        if self.price_change_24h_pct > 0:
            return "up"
        elif self.price_change_24h_pct < 0:
            return "down"
        return "flat"

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "asset_id": self.asset_id,
            "price_usd": self.price_usd,
            "price_change_24h_pct": self.price_change_24h_pct,
            "price_in_quote_asset": self.price_in_quote_asset,
            "symbol": self.symbol,
            "name": self.name,
            "observed_at": self.observed_at,
            "direction": self.direction,
        }


@dataclass(frozen=True, slots=True)
class Trade:
    """A single swap on one of an asset's pools."""

    dedupe_key: str
    asset_id: str
    tx_hash: str
    counterparty_from: str = "Unknown"
    counterparty_to: str = "Unknown"
    amount: float = 0.0
    occurred_at: float = field(default_factory=time.time)  # Unix seconds
    side: TradeSide = TradeSide.BUY

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _non_negative(self.amount))

    def for_asset(self, asset_id: str) -> Trade:
        """Copy of this trade attributed to another asset."""
        return replace(self, asset_id=asset_id)

    def to_dict(self) -> dict:
        return {
            "dedupe_key": self.dedupe_key,
            "asset_id": self.asset_id,
            "tx_hash": self.tx_hash,
            "from": self.counterparty_from,
            "to": self.counterparty_to,
            "amount": self.amount,
            "occurred_at": self.occurred_at,
            "side": self.side.value,
        }


@dataclass(frozen=True, slots=True)
class PairPrice:
    """Price fields decoded from an inbound pool frame, not yet tied to an asset."""

    price_usd: float
    price_change_24h_pct: float
    price_in_quote_asset: float | None
    symbol: str
    name: str


@dataclass(frozen=True, slots=True)
class FeedEvent:
    """One decoded inbound frame. Either part may be missing.

    ``trade.asset_id`` holds the pool address until the dispatcher
    attributes it to the owning asset(s).
    """

    pool_address: str
    price: PairPrice | None = None
    trade: Trade | None = None
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class ViewerEvent:
    """Envelope for everything pushed to a viewer."""

    type: str  # 'price_update', 'trade' or 'trades_snapshot'
    asset_id: str
    data: Any

    def to_dict(self) -> dict:
        if isinstance(self.data, list):
            data = [item.to_dict() for item in self.data]
        else:
            data = self.data.to_dict()
        return {"type": self.type, "asset_id": self.asset_id, "data": data}
