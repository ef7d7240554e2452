"""Tests for QuoteCache."""

from tokenrelay.market.cache import QuoteCache
from tokenrelay.market.models import PriceQuote


def _quote(asset_id: str, price: float, observed_at: float = 1000.0) -> PriceQuote:
    return PriceQuote(asset_id=asset_id, price_usd=price, observed_at=observed_at)


class TestQuoteCache:
    """Unit tests for the QuoteCache."""

    def test_update_and_get(self):
        """Test storing and reading a quote."""
        cache = QuoteCache()
        quote = _quote("X", 1.5)
        assert cache.update(quote) is quote
        assert cache.get("X") is quote

    def test_older_quote_ignored(self):
        """Test that an out-of-order older quote does not replace a newer one."""
        cache = QuoteCache()
        newer = _quote("X", 2.0, observed_at=2000.0)
        cache.update(newer)
        current = cache.update(_quote("X", 1.0, observed_at=1000.0))
        assert current is newer
        assert cache.get("X") is newer

    def test_remove(self):
        """Test removing an asset."""
        cache = QuoteCache()
        cache.update(_quote("X", 1.0))
        cache.remove("X")
        assert cache.get("X") is None

    def test_remove_nonexistent(self):
        """Test removing an asset that doesn't exist."""
        cache = QuoteCache()
        cache.remove("X")  # Should not raise

    def test_get_all(self):
        """Test getting all quotes."""
        cache = QuoteCache()
        cache.update(_quote("X", 1.0))
        cache.update(_quote("Y", 2.0))
        assert set(cache.get_all()) == {"X", "Y"}

    def test_version_increments(self):
        """Test that version only moves on accepted updates."""
        cache = QuoteCache()
        v0 = cache.version
        cache.update(_quote("X", 1.0, observed_at=2000.0))
        assert cache.version == v0 + 1
        cache.update(_quote("X", 1.0, observed_at=1000.0))
        assert cache.version == v0 + 1

    def test_len_and_contains(self):
        """Test __len__ and __contains__."""
        cache = QuoteCache()
        assert len(cache) == 0
        cache.update(_quote("X", 1.0))
        assert len(cache) == 1
        assert "X" in cache
        assert "Y" not in cache
