"""Upstream wire frames: outbound builders, inbound decoding, field coercion.

The provider's payloads are loosely typed (numbers arrive as strings, fields
go missing), so everything read from them goes through ``as_float`` /
``as_str`` / ``as_timestamp`` and falls back to a default instead of raising.
"""

from __future__ import annotations

import json
import math
import time
from datetime import datetime
from typing import Any

from .assets import NATIVE_NAME, NATIVE_SYMBOL, looks_native
from .models import FeedEvent, PairPrice, PoolRef, Trade, TradeSide, make_dedupe_key

PING_FRAME: dict[str, str] = {"event": "ping"}

# Upstream fields that disambiguate several swaps inside one transaction
DISCRIMINATOR_FIELDS = ("logIndex", "log_index", "swapIndex", "index")

_TRADE_REQUIRED_FIELDS = ("hash", "type", "token_amount")


# --- Coercion ---


def as_float(value: Any, default: float | None = 0.0) -> float | None:
    """Parse a provider number. NaN, infinities and junk give ``default``."""
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def as_str(value: Any, default: str = "") -> str:
    if value is None or value == "":
        return default
    return str(value)


def as_timestamp(value: Any, default: float | None = None) -> float:
    """Unix seconds from epoch seconds, epoch milliseconds or an ISO-8601 string."""
    fallback = time.time() if default is None else default
    if value is None or isinstance(value, bool):
        return fallback
    number = as_float(value, default=None)
    if number is not None:
        # Anything this large is milliseconds (seconds would be year 5000+)
        return number / 1000.0 if number > 1e11 else number
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return fallback
    return fallback


def discriminator(raw: dict) -> Any:
    """Sequence field separating swaps inside one transaction; 0 when absent.

    Shared by the stream decoder and the REST client so both build the same
    dedupe key for the same swap.
    """
    for key in DISCRIMINATOR_FIELDS:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return 0


# --- Outbound ---


def market_details_frame(api_key: str, pools: list[PoolRef]) -> dict:
    """Declare the full set of pools the connection should stream."""
    return {
        "type": "market-details",
        "authorization": api_key,
        "payload": {
            "pools": [pool.to_dict() for pool in pools],
            "subscriptionTracking": True,
        },
    }


def unsubscribe_frame(api_key: str, pools: list[PoolRef]) -> dict:
    return {
        "type": "unsubscribe",
        "authorization": api_key,
        "payload": {
            "type": "market-details",
            "pools": [pool.to_dict() for pool in pools],
        },
    }


# --- Inbound ---


def decode_frame(raw: str | bytes) -> FeedEvent | None:
    """Decode one inbound message into a FeedEvent.

    Returns None for anything that carries neither a price nor a trade for a
    known pool (pongs, acks, garbage).
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict):
        return None

    pool_address = _pool_address(message)
    if not pool_address:
        return None

    price = _decode_price(message.get("pairData"))
    trade = _decode_trade(message, pool_address)
    if price is None and trade is None:
        return None
    return FeedEvent(pool_address=pool_address, price=price, trade=trade)


def _pool_address(message: dict) -> str:
    pair = message.get("pair")
    if isinstance(pair, dict):
        pair = pair.get("address")
    if not pair:
        pair_data = message.get("pairData")
        if isinstance(pair_data, dict):
            pair = pair_data.get("address")
    return as_str(pair)


def _decode_price(pair_data: Any) -> PairPrice | None:
    if not isinstance(pair_data, dict):
        return None
    base = pair_data.get("base")
    if not isinstance(base, dict):
        return None

    symbol = as_str(base.get("symbol"))
    name = as_str(base.get("name"))
    native = looks_native(symbol, name)
    return PairPrice(
        price_usd=as_float(base.get("priceUSD")),
        price_change_24h_pct=as_float(pair_data.get("priceChange24hPercentage")),
        price_in_quote_asset=1.0 if native else as_float(base.get("priceToken"), default=None),
        symbol=NATIVE_SYMBOL if native else symbol,
        name=NATIVE_NAME if native else name,
    )


def _decode_trade(message: dict, pool_address: str) -> Trade | None:
    if not all(message.get(key) for key in _TRADE_REQUIRED_FIELDS):
        return None

    tx_hash = as_str(message.get("hash"))
    return Trade(
        dedupe_key=make_dedupe_key(tx_hash, discriminator(message)),
        asset_id=pool_address,
        tx_hash=tx_hash,
        counterparty_from=as_str(message.get("sender"), "Unknown"),
        counterparty_to=as_str(message.get("swapRecipient"), "Unknown"),
        amount=as_float(message.get("token_amount")),
        occurred_at=as_timestamp(message.get("date")),
        side=TradeSide.parse(message.get("type")),
    )
