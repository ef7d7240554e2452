"""Single upstream websocket to the provider's market feed."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .frames import PING_FRAME, decode_frame, market_details_frame, unsubscribe_frame
from .models import ConnectionState, FeedEvent, PoolRef

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "wss://api.mobula.io"
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_RECONNECT_DELAY = 3.0


class FeedHandler(Protocol):
    """Receives connection callbacks. MarketRelay is the production handler."""

    async def on_feed_open(self) -> None: ...

    def on_feed_event(self, event: FeedEvent) -> None: ...


@dataclass
class FeedStats:
    """Counters for the status endpoint."""

    messages_received: int = 0
    messages_decoded: int = 0
    messages_dropped: int = 0
    reconnects: int = 0
    connected_since: float = 0.0  # Unix seconds, 0 while not open

    def to_dict(self) -> dict:
        return {
            "messages_received": self.messages_received,
            "messages_decoded": self.messages_decoded,
            "messages_dropped": self.messages_dropped,
            "reconnects": self.reconnects,
            "connected_since": self.connected_since,
        }


class FeedConnection:
    """Owns exactly one upstream socket and its lifecycle.

    State machine:
        DISCONNECTED --connect()--> CONNECTING --handshake--> OPEN
        OPEN --error/close--> DISCONNECTED --(reconnect_delay)--> CONNECTING
        any --stop()--> CLOSING --> DISCONNECTED (no reconnect)

    On OPEN the handler's ``on_feed_open`` runs (the registry replays every
    active pool) and the heartbeat task starts. Leaving OPEN cancels the
    heartbeat and schedules one reconnect. At most one heartbeat task and one
    reconnect timer exist at any time; a new one always cancels the old.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        handler: FeedHandler,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        open_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._handler = handler
        self._heartbeat_interval = heartbeat_interval
        self._reconnect_delay = reconnect_delay
        self._open_timeout = open_timeout

        self._state = ConnectionState.DISCONNECTED
        self._ws: ClientConnection | None = None
        self._connect_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._stopping = False

        self.stats = FeedStats()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # --- Lifecycle ---

    async def start(self) -> None:
        self._stopping = False
        self.connect()

    async def stop(self) -> None:
        """Close the socket and cancel all timers. Safe to call multiple times."""
        self._stopping = True
        self._cancel_reconnect()
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            self._state = ConnectionState.CLOSING
        self._stop_heartbeat()

        if self._ws is not None:
            await self._close_socket(self._ws)

        task = self._connect_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connect_task = None
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("Feed connection stopped")

    def connect(self) -> None:
        """Start a connection attempt unless one is already live or pending."""
        if self._stopping:
            logger.debug("Feed is stopped, ignoring connect()")
            return
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.CLOSING):
            return
        self._cancel_reconnect()
        self._state = ConnectionState.CONNECTING
        self._connect_task = asyncio.create_task(self._run(), name="feed-connection")

    # --- Outbound ---

    async def send(self, frame: dict[str, Any]) -> bool:
        """Send one JSON frame. Returns False when not open or the send fails."""
        ws = self._ws
        if self._state is not ConnectionState.OPEN or ws is None:
            logger.debug("Feed not open, not sending %s", frame.get("type") or frame.get("event"))
            return False
        try:
            await ws.send(json.dumps(frame))
            return True
        except ConnectionClosed as e:
            logger.warning("Feed send failed, connection closed: %s", e)
            return False

    async def subscribe_pools(self, pools: list[PoolRef]) -> bool:
        """Declare the full active pool set."""
        return await self.send(market_details_frame(self._api_key, pools))

    async def unsubscribe_pools(self, pools: list[PoolRef]) -> bool:
        return await self.send(unsubscribe_frame(self._api_key, pools))

    # --- Internal ---

    async def _run(self) -> None:
        """One connection attempt, from handshake until the socket closes."""
        try:
            ws = await ws_connect(
                self._url,
                ping_interval=None,  # Provider expects its own ping frame, see _heartbeat_loop
                open_timeout=self._open_timeout,
                close_timeout=5,
                max_size=2**22,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning("Feed connection to %s failed: %s", self._url, e)
            self._on_disconnected()
            return

        self._ws = ws
        self._state = ConnectionState.OPEN
        self.stats.connected_since = time.time()
        logger.info("Feed connected: %s", self._url)

        try:
            await self._notify_open()
            self._start_heartbeat()
            async for raw in ws:
                self._handle_raw(raw)
            logger.info("Feed closed by server (code=%s)", ws.close_code)
        except ConnectionClosed as e:
            logger.warning("Feed connection lost: %s", e)
        except Exception:
            logger.exception("Feed receive loop failed")
        finally:
            self._on_disconnected()
            await self._close_socket(ws)

    async def _close_socket(self, ws: ClientConnection) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("Error while closing feed socket: %s", e)

    async def _notify_open(self) -> None:
        try:
            await self._handler.on_feed_open()
        except Exception:
            logger.exception("Feed open handler failed")

    def _handle_raw(self, raw: str | bytes) -> None:
        self.stats.messages_received += 1
        try:
            event = decode_frame(raw)
        except Exception:
            logger.exception("Failed to decode feed frame: %.200s", raw)
            event = None
        if event is None:
            self.stats.messages_dropped += 1
            logger.debug("Dropped unrecognized feed frame: %.200s", raw)
            return

        self.stats.messages_decoded += 1
        try:
            self._handler.on_feed_event(event)
        except Exception:
            logger.exception("Feed event handler failed for pool %s", event.pool_address)

    def _on_disconnected(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._stop_heartbeat()
        self._ws = None
        self.stats.connected_since = 0.0
        if self._stopping:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._reconnect)
        logger.info("Feed reconnecting in %.1fs", self._reconnect_delay)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.stats.reconnects += 1
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="feed-heartbeat")

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        """Send the provider's keepalive while the connection is open."""
        while self._state is ConnectionState.OPEN:
            await asyncio.sleep(self._heartbeat_interval)
            if self._state is ConnectionState.OPEN:
                await self.send(PING_FRAME)
