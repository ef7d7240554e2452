"""HTTP surface for viewers: SSE stream, multiplexed websocket, quote and status."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from .relay import MarketRelay
from .viewer import Viewer

logger = logging.getLogger(__name__)


def create_stream_router(relay: MarketRelay) -> APIRouter:
    """Create the viewer-facing router with a reference to the relay.

    This factory pattern lets us inject the MarketRelay without globals.
    """
    router = APIRouter(prefix="/api", tags=["streaming"])

    @router.get("/stream/{asset_id}")
    async def stream_asset(
        asset_id: str,
        request: Request,
        quotes: bool = True,
        trades: bool = True,
    ) -> StreamingResponse:
        """SSE endpoint for one asset.

        The first events are the current quote and the recent-trades snapshot
        (when the provider has them), followed by live updates:

            data: {"type": "price_update", "asset_id": "...", "data": {...}}
            data: {"type": "trade", "asset_id": "...", "data": {...}}
        """
        if not (quotes or trades):
            raise HTTPException(status_code=400, detail="Nothing to stream: enable quotes or trades")
        return StreamingResponse(
            _generate_events(relay, asset_id, request, quotes=quotes, trades=trades),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.websocket("/ws")
    async def viewer_socket(websocket: WebSocket) -> None:
        """Multiplexed viewer socket.

        Client messages: {"type": "subscribe" | "unsubscribe" | "subscribe_trades"
        | "unsubscribe_trades", "tokenAddress": "..."}. Server messages use the
        same envelope as the SSE stream.
        """
        await websocket.accept()
        viewer = Viewer()
        pump = asyncio.create_task(_pump_events(viewer, websocket), name=f"viewer-{viewer.viewer_id}")
        logger.info("Viewer socket connected: %s", viewer.viewer_id)
        try:
            while True:
                raw = await websocket.receive_text()
                await _handle_viewer_message(relay, viewer, raw)
        except WebSocketDisconnect:
            logger.info("Viewer socket disconnected: %s", viewer.viewer_id)
        finally:
            await relay.disconnect(viewer)
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    @router.get("/quotes/{asset_id}")
    async def get_quote(asset_id: str) -> dict:
        quote = await relay.get_quote(asset_id)
        if quote is None:
            raise HTTPException(status_code=404, detail=f"No quote for {asset_id}")
        return quote.to_dict()

    @router.get("/status")
    async def get_status() -> dict:
        return relay.status()

    return router


async def _generate_events(
    relay: MarketRelay,
    asset_id: str,
    request: Request,
    quotes: bool = True,
    trades: bool = True,
    poll_interval: float = 1.0,
    keepalive_interval: float = 15.0,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted events for one viewer.

    Stops when the client disconnects (detected via request.is_disconnected())
    and always releases the viewer's subscriptions on the way out.
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    viewer = Viewer()
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s (%s)", client_ip, asset_id)

    try:
        if quotes:
            await relay.subscribe_quote(asset_id, viewer)
        if trades:
            await relay.subscribe_trades(asset_id, viewer)

        last_sent = time.monotonic()
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            event = await viewer.get(timeout=poll_interval)
            if event is not None:
                last_sent = time.monotonic()
                yield f"data: {json.dumps(event.to_dict())}\n\n"
            elif viewer.closed:
                break
            elif time.monotonic() - last_sent >= keepalive_interval:
                last_sent = time.monotonic()
                yield ": keepalive\n\n"
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
    finally:
        await relay.disconnect(viewer)


async def _pump_events(viewer: Viewer, websocket: WebSocket) -> None:
    """Forward a viewer's queued events to its websocket until either side closes."""
    try:
        async for event in viewer.events():
            await websocket.send_json(event.to_dict())
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Stopped pumping to viewer %s: %s", viewer.viewer_id, e)


async def _handle_viewer_message(relay: MarketRelay, viewer: Viewer, raw: str) -> None:
    try:
        message: Any = json.loads(raw)
    except ValueError:
        logger.warning("Viewer %s sent invalid JSON, ignoring", viewer.viewer_id)
        return
    if not isinstance(message, dict):
        logger.warning("Viewer %s sent a non-object message, ignoring", viewer.viewer_id)
        return

    asset_id = message.get("tokenAddress") or message.get("asset_id")
    if not isinstance(asset_id, str) or not asset_id.strip():
        logger.warning("Viewer %s message without tokenAddress: %.200s", viewer.viewer_id, raw)
        return

    action = message.get("type")
    if action == "subscribe":
        await relay.subscribe_quote(asset_id, viewer)
    elif action == "unsubscribe":
        await relay.unsubscribe_quote(asset_id, viewer)
    elif action == "subscribe_trades":
        await relay.subscribe_trades(asset_id, viewer)
    elif action == "unsubscribe_trades":
        await relay.unsubscribe_trades(asset_id, viewer)
    else:
        logger.warning("Viewer %s sent unknown message type %r", viewer.viewer_id, action)
