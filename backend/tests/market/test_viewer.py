"""Tests for the per-viewer queue."""

import asyncio

import pytest

from tokenrelay.market.models import PriceQuote, ViewerEvent
from tokenrelay.market.viewer import Viewer


def _event(price: float) -> ViewerEvent:
    return ViewerEvent(type="price_update", asset_id="X", data=PriceQuote(asset_id="X", price_usd=price))


@pytest.mark.asyncio
class TestViewer:
    """Unit tests for Viewer."""

    async def test_deliver_and_get(self):
        """Test that events come out in delivery order."""
        viewer = Viewer()
        viewer.deliver(_event(1.0))
        viewer.deliver(_event(2.0))

        assert (await viewer.get()).data.price_usd == 1.0
        assert (await viewer.get()).data.price_usd == 2.0

    async def test_full_queue_drops_oldest(self):
        """Test that a slow viewer keeps the newest events."""
        viewer = Viewer(max_queue=2)
        for price in (1.0, 2.0, 3.0):
            assert viewer.deliver(_event(price)) is True

        assert viewer.dropped == 1
        assert viewer.pending == 2
        assert (await viewer.get()).data.price_usd == 2.0

    async def test_get_timeout(self):
        """Test that get() returns None when nothing arrives."""
        assert await Viewer().get(timeout=0.01) is None

    async def test_close_rejects_new_events(self):
        """Test that a closed viewer refuses delivery."""
        viewer = Viewer()
        viewer.close()
        viewer.close()  # Idempotent
        assert viewer.closed
        assert viewer.deliver(_event(1.0)) is False

    async def test_events_iterator_ends_on_close(self):
        """Test that events() yields pending events then stops at close."""
        viewer = Viewer()
        viewer.deliver(_event(1.0))

        async def consume():
            return [event async for event in viewer.events()]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        viewer.close()
        received = await asyncio.wait_for(task, timeout=1.0)

        assert [e.data.price_usd for e in received] == [1.0]

    async def test_close_on_full_queue(self):
        """Test that closing a full queue still wakes the reader."""
        viewer = Viewer(max_queue=1)
        viewer.deliver(_event(1.0))
        viewer.close()

        assert await viewer.get() is None
        assert await viewer.get() is None

    async def test_ids_unique(self):
        """Test that generated ids differ and explicit ids are kept."""
        assert Viewer().viewer_id != Viewer().viewer_id
        assert Viewer("abc").viewer_id == "abc"
