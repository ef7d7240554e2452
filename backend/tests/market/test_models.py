"""Tests for market relay data models."""

import math

from tokenrelay.market.assets import NATIVE_ASSET_ADDRESS, is_native_asset, normalize_asset_id
from tokenrelay.market.models import (
    PoolRef,
    PriceQuote,
    Trade,
    TradeSide,
    ViewerEvent,
    make_dedupe_key,
)


class TestPriceQuote:
    """Unit tests for the PriceQuote model."""

    def test_change_rounded_to_two_decimals(self):
        """Test that the 24h change is rounded at construction."""
        quote = PriceQuote(asset_id="X", price_usd=1.0, price_change_24h_pct=3.14159, observed_at=1.0)
        assert quote.price_change_24h_pct == 3.14

    def test_negative_price_clamped(self):
        """Test that a negative price becomes zero."""
        quote = PriceQuote(asset_id="X", price_usd=-5.0, observed_at=1.0)
        assert quote.price_usd == 0.0

    def test_nan_values_defaulted(self):
        """Test that NaN price and change are defaulted to zero."""
        quote = PriceQuote(asset_id="X", price_usd=math.nan, price_change_24h_pct=math.nan, observed_at=1.0)
        assert quote.price_usd == 0.0
        assert quote.price_change_24h_pct == 0.0

    def test_direction(self):
        """Test direction from the 24h change."""
        assert PriceQuote(asset_id="X", price_usd=1.0, price_change_24h_pct=2.0).direction == "up"
        assert PriceQuote(asset_id="X", price_usd=1.0, price_change_24h_pct=-2.0).direction == "down"
        assert PriceQuote(asset_id="X", price_usd=1.0).direction == "flat"

    def test_to_dict(self):
        """Test serialization."""
        quote = PriceQuote(
            asset_id="X",
            price_usd=2.5,
            price_change_24h_pct=1.234,
            price_in_quote_asset=None,
            symbol="XYZ",
            name="Xyz",
            observed_at=1234567890.0,
        )
        assert quote.to_dict() == {
            "asset_id": "X",
            "price_usd": 2.5,
            "price_change_24h_pct": 1.23,
            "price_in_quote_asset": None,
            "symbol": "XYZ",
            "name": "Xyz",
            "observed_at": 1234567890.0,
            "direction": "up",
        }


class TestTrade:
    """Unit tests for the Trade model."""

    def test_negative_amount_clamped(self):
        """Test that amounts are never negative."""
        trade = Trade(dedupe_key="h:0", asset_id="X", tx_hash="h", amount=-1.0)
        assert trade.amount == 0.0

    def test_for_asset_copies(self):
        """Test re-attributing a trade keeps everything else."""
        trade = Trade(dedupe_key="h:0", asset_id="POOL", tx_hash="h", amount=3.0, occurred_at=5.0)
        moved = trade.for_asset("X")
        assert moved.asset_id == "X"
        assert moved.dedupe_key == "h:0"
        assert moved.amount == 3.0
        assert trade.asset_id == "POOL"

    def test_to_dict(self):
        """Test serialization uses from/to and the side value."""
        trade = Trade(
            dedupe_key="h:1",
            asset_id="X",
            tx_hash="h",
            counterparty_from="alice",
            counterparty_to="bob",
            amount=2.0,
            occurred_at=10.0,
            side=TradeSide.SELL,
        )
        data = trade.to_dict()
        assert data["from"] == "alice"
        assert data["to"] == "bob"
        assert data["side"] == "sell"
        assert data["tx_hash"] == "h"

    def test_side_parsing(self):
        """Test that anything other than 'sell' is a buy."""
        assert TradeSide.parse("sell") is TradeSide.SELL
        assert TradeSide.parse("SELL") is TradeSide.SELL
        assert TradeSide.parse("buy") is TradeSide.BUY
        assert TradeSide.parse(None) is TradeSide.BUY

    def test_dedupe_key(self):
        """Test the dedupe key combines hash and discriminator."""
        assert make_dedupe_key("abc", 3) == "abc:3"


class TestPoolRef:
    """Unit tests for PoolRef."""

    def test_wire_shape(self):
        """Test the upstream serialization."""
        assert PoolRef(chain="solana", address="P1").to_dict() == {"blockchain": "solana", "address": "P1"}

    def test_value_equality(self):
        """Test pools compare and hash by value."""
        assert PoolRef("solana", "P1") == PoolRef("solana", "P1")
        assert len({PoolRef("solana", "P1"), PoolRef("solana", "P1")}) == 1


class TestViewerEvent:
    """Unit tests for ViewerEvent."""

    def test_list_payload(self):
        """Test that list payloads are serialized item by item."""
        trade = Trade(dedupe_key="h:0", asset_id="X", tx_hash="h", occurred_at=1.0)
        event = ViewerEvent(type="trades_snapshot", asset_id="X", data=[trade])
        assert event.to_dict()["data"] == [trade.to_dict()]


class TestAssetAliases:
    """Tests for native-asset alias normalization."""

    def test_aliases_normalize(self):
        """Test that native aliases map to the canonical address, case-insensitively."""
        assert normalize_asset_id("solana") == NATIVE_ASSET_ADDRESS
        assert normalize_asset_id("SOL") == NATIVE_ASSET_ADDRESS
        assert normalize_asset_id("  Sol ") == NATIVE_ASSET_ADDRESS

    def test_other_ids_untouched(self):
        """Test that ordinary addresses keep their case."""
        assert normalize_asset_id("AbCdEf") == "AbCdEf"

    def test_is_native(self):
        """Test native detection."""
        assert is_native_asset("solana")
        assert is_native_asset(NATIVE_ASSET_ADDRESS)
        assert not is_native_asset("AbCdEf")
