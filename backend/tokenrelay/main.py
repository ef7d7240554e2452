"""FastAPI application entry point.

Run with: uvicorn tokenrelay.main:app
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .market import MarketRelay, create_market_relay, create_stream_router


def create_app(relay: MarketRelay | None = None) -> FastAPI:
    """Build the app around a relay; the relay is started and stopped with the app."""
    relay = relay or create_market_relay()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await relay.start()
        try:
            yield
        finally:
            await relay.stop()

    app = FastAPI(title="tokenrelay", lifespan=lifespan)
    app.state.relay = relay
    app.include_router(create_stream_router(relay))
    return app


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
