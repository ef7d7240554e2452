"""Per-viewer outbound queue."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator

from .models import ViewerEvent

logger = logging.getLogger(__name__)


class Viewer:
    """One downstream consumer (an SSE client, a websocket client, a widget).

    Delivery never blocks the caller: the queue is bounded and, when full, the
    oldest pending event is dropped to make room for the newest. A slow viewer
    therefore loses history but never holds up delivery to anyone else.
    """

    def __init__(self, viewer_id: str | None = None, max_queue: int = 256) -> None:
        self.viewer_id = viewer_id or uuid.uuid4().hex[:12]
        self._queue: asyncio.Queue[ViewerEvent | None] = asyncio.Queue(maxsize=max_queue)
        self._closed = False
        self.dropped = 0

    def deliver(self, event: ViewerEvent) -> bool:
        """Queue an event. Returns False if the viewer is already closed."""
        if self._closed:
            return False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self.dropped += 1
                logger.debug("Viewer %s queue full, dropped oldest event", self.viewer_id)
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Stop accepting events and wake up any reader. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)  # Sentinel: end of stream

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> ViewerEvent | None:
        """Next event, or None on timeout or once the viewer is closed."""
        if self._closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def events(self) -> AsyncIterator[ViewerEvent]:
        """Iterate over events until the viewer is closed."""
        while not (self._closed and self._queue.empty()):
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def __repr__(self) -> str:
        return f"Viewer({self.viewer_id!r}, pending={self.pending}, closed={self._closed})"
