"""Thread-safe in-memory store of the latest quote per asset."""

from __future__ import annotations

from threading import Lock

from .models import PriceQuote


class QuoteCache:
    """Latest PriceQuote for each subscribed asset.

    Writers: FanoutDispatcher (streamed prices), MarketRelay (HTTP snapshots).
    Readers: new subscribers (initial snapshot), the quote endpoint, status.
    """

    def __init__(self) -> None:
        self._quotes: dict[str, PriceQuote] = {}
        self._lock = Lock()
        self._version: int = 0  # Monotonically increasing; bumped on every update

    def update(self, quote: PriceQuote) -> PriceQuote:
        """Store a quote unless an entry observed later is already cached.

        Returns whichever quote is current after the call.
        """
        with self._lock:
            current = self._quotes.get(quote.asset_id)
            if current is not None and current.observed_at > quote.observed_at:
                return current
            self._quotes[quote.asset_id] = quote
            self._version += 1
            return quote

    def get(self, asset_id: str) -> PriceQuote | None:
        with self._lock:
            return self._quotes.get(asset_id)

    def get_all(self) -> dict[str, PriceQuote]:
        """Snapshot of all current quotes. Returns a shallow copy."""
        with self._lock:
            return dict(self._quotes)

    def remove(self, asset_id: str) -> None:
        """Forget an asset (its last viewer left)."""
        with self._lock:
            self._quotes.pop(asset_id, None)

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._quotes)

    def __contains__(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self._quotes
