"""Mobula REST API client for point-in-time quotes, trades and pool discovery."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .assets import (
    DEFAULT_CHAIN,
    NATIVE_ASSET_ADDRESS,
    TRADE_HISTORY_SIZE,
    is_native_asset,
    looks_native,
    normalize_asset_id,
)
from .errors import ProviderError
from .frames import as_float, as_str, as_timestamp, discriminator
from .interface import QuoteGateway
from .models import PoolListing, PoolRef, PriceQuote, Trade, TradeSide, make_dedupe_key

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.mobula.io/api"


class MobulaGateway(QuoteGateway):
    """QuoteGateway backed by the Mobula HTTP API.

    One aiohttp session is created lazily and reused; every request is bounded
    by ``timeout`` seconds so a stalled provider never blocks a subscriber for
    long.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        default_chain: str = DEFAULT_CHAIN,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._default_chain = default_chain
        self._session: aiohttp.ClientSession | None = None

    async def fetch_quote(self, asset_id: str) -> PriceQuote | None:
        asset = normalize_asset_id(asset_id)
        try:
            payload = await self._get_json("/1/market/data", {"asset": asset})
        except ProviderError as e:
            logger.warning("Quote fetch failed for %s: %s", asset, e)
            return None

        data = payload.get("data")
        if not isinstance(data, dict) or not data:
            logger.info("No quote data for %s", asset)
            return None

        price = as_float(data.get("price"))
        symbol = as_str(data.get("symbol"))
        name = as_str(data.get("name"))

        if is_native_asset(asset) or looks_native(symbol, name):
            price_in_quote = 1.0
        else:
            reference = await self.fetch_reference_price()
            price_in_quote = price / reference if reference > 0 else 0.0

        return PriceQuote(
            asset_id=asset,
            price_usd=price,
            price_change_24h_pct=as_float(data.get("price_change_24h")),
            price_in_quote_asset=price_in_quote,
            symbol=symbol,
            name=name,
        )

    async def fetch_reference_price(self) -> float:
        try:
            payload = await self._get_json("/1/market/data", {"asset": NATIVE_ASSET_ADDRESS})
        except ProviderError as e:
            logger.warning("Reference price unavailable: %s", e)
            return 0.0
        data = payload.get("data")
        if not isinstance(data, dict):
            return 0.0
        return as_float(data.get("price"))

    async def fetch_recent_trades(self, asset_id: str, limit: int = TRADE_HISTORY_SIZE) -> list[Trade]:
        asset = normalize_asset_id(asset_id)
        params = {
            "blockchain": self._default_chain,
            "address": asset,
            "limit": limit,
            "mode": "asset",
        }
        try:
            payload = await self._get_json("/2/token/trades", params)
        except ProviderError as e:
            logger.warning("Trade fetch failed for %s: %s", asset, e)
            return []

        data = payload.get("data")
        if not isinstance(data, list):
            return []

        trades = [
            _parse_trade(asset, raw) for raw in data[:limit] if isinstance(raw, dict)
        ]
        trades.sort(key=lambda t: t.occurred_at, reverse=True)
        logger.debug("Fetched %d trades for %s", len(trades), asset)
        return trades

    async def discover_pools(self, asset_id: str, chain: str) -> list[PoolListing]:
        asset = normalize_asset_id(asset_id)
        payload = await self._get_json("/1/market/pairs", {"asset": asset, "blockchain": chain})

        data = payload.get("data")
        pairs = data.get("pairs") if isinstance(data, dict) else None
        if not isinstance(pairs, list):
            return []

        listings: list[PoolListing] = []
        for pair in pairs:
            if not isinstance(pair, dict):
                continue
            address = as_str(pair.get("address"))
            if not address:
                continue
            listings.append(
                PoolListing(
                    pool=PoolRef(chain=as_str(pair.get("blockchain"), chain), address=address),
                    liquidity=as_float(pair.get("liquidity")),
                )
            )
        return listings

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # --- Internal ---

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Authorization": self._api_key},
            )
        return self._session

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict:
        """GET a provider endpoint and return the decoded JSON object.

        Raises ProviderError on HTTP errors, timeouts, network errors and
        bodies that are not a JSON object.
        """
        url = f"{self._base_url}{path}"
        session = self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise ProviderError(
                        f"{path} returned HTTP {resp.status}: {body[:200]}", status=resp.status
                    )
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(f"{path} failed: {e!r}") from e

        if not isinstance(payload, dict):
            raise ProviderError(f"{path} returned a non-object body")
        return payload


def _parse_trade(asset_id: str, raw: dict) -> Trade:
    """Normalize one trade from the REST endpoint.

    The dedupe key matches the one ``decode_frame`` builds for the same swap.
    """
    tx_hash = as_str(raw.get("transactionHash") or raw.get("hash"), "unknown")
    return Trade(
        dedupe_key=make_dedupe_key(tx_hash, discriminator(raw)),
        asset_id=asset_id,
        tx_hash=tx_hash,
        counterparty_from=as_str(raw.get("swapSenderAddress") or raw.get("from"), "Unknown"),
        counterparty_to=as_str(raw.get("to") or raw.get("receiver"), "Unknown"),
        amount=as_float(raw.get("baseTokenAmount") or raw.get("amount")),
        occurred_at=as_timestamp(raw.get("date")),
        side=TradeSide.parse(raw.get("type")),
    )
