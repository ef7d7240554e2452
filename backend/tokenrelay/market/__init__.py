"""Market data relay for tokenrelay.

Public API:
    PriceQuote          - Immutable price snapshot dataclass
    Trade               - Immutable trade dataclass
    PoolRef             - Upstream pool identifier
    Viewer              - Per-consumer event queue
    MarketRelay         - Shared upstream feed with per-viewer fan-out
    QuoteGateway        - Abstract interface for the quote provider
    create_market_relay - Factory that builds the relay from environment variables
    create_stream_router - FastAPI router factory for SSE / websocket viewers
"""

from .factory import RelaySettings, create_market_relay
from .interface import QuoteGateway
from .models import PoolRef, PriceQuote, Trade
from .relay import MarketRelay
from .stream import create_stream_router
from .viewer import Viewer

__all__ = [
    "PriceQuote",
    "Trade",
    "PoolRef",
    "Viewer",
    "MarketRelay",
    "QuoteGateway",
    "RelaySettings",
    "create_market_relay",
    "create_stream_router",
]
