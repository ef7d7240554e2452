"""Subscription registry: which viewers want which assets, on which pools."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol

from .assets import normalize_asset_id
from .models import Channel, PoolRef
from .resolver import PoolResolver
from .viewer import Viewer

logger = logging.getLogger(__name__)


class UpstreamFeed(Protocol):
    """The part of FeedConnection the registry drives."""

    @property
    def is_open(self) -> bool: ...

    def connect(self) -> None: ...

    async def subscribe_pools(self, pools: list[PoolRef]) -> bool: ...

    async def unsubscribe_pools(self, pools: list[PoolRef]) -> bool: ...


@dataclass
class Subscription:
    """Interest in one asset. Exists exactly while ``viewer_count > 0``.

    ``pools`` are ranked best first; only ``pool`` (the first) is subscribed
    upstream, the rest are kept for display.
    """

    asset_id: str
    pools: tuple[PoolRef, ...]
    interests: Counter = field(default_factory=Counter)  # (viewer, channel) -> count
    created_at: float = field(default_factory=time.time)

    @property
    def pool(self) -> PoolRef:
        return self.pools[0]

    @property
    def viewer_count(self) -> int:
        return sum(self.interests.values())

    def viewers(self, channel: Channel) -> list[Viewer]:
        return [viewer for viewer, ch in self.interests if ch is channel]

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "pool": self.pool.to_dict(),
            "alternate_pools": [p.to_dict() for p in self.pools[1:]],
            "viewer_count": self.viewer_count,
            "quote_viewers": len(self.viewers(Channel.QUOTES)),
            "trade_viewers": len(self.viewers(Channel.TRADES)),
            "created_at": self.created_at,
        }


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class _KeyedLocks:
    """One asyncio.Lock per key, discarded once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class SubscriptionRegistry:
    """Sole owner of Subscriptions and of the upstream pool set.

    Concurrency: calls for the same asset are serialised by a per-asset lock
    (pool resolution happens while it is held, so a racing unsubscribe waits
    for the subscribe it races with). Map mutations and the upstream frames
    they cause are serialised by one registry-wide lock, so frames leave in
    the order the mutations happened.

    Invariant: once settled and open, the pools the upstream connection is
    subscribed to are exactly ``active_pools()``.
    """

    def __init__(self, resolver: PoolResolver, feed: UpstreamFeed) -> None:
        self._resolver = resolver
        self._feed = feed
        self._subscriptions: dict[str, Subscription] = {}
        self._pool_index: dict[str, set[str]] = {}  # pool address -> asset ids
        self._asset_locks = _KeyedLocks()
        self._lock = asyncio.Lock()

    # --- Mutations ---

    async def subscribe(self, asset_id: str, viewer: Viewer, channel: Channel = Channel.QUOTES) -> int:
        """Register interest. Returns the asset's viewer count afterwards.

        The first interest in an asset resolves its pools and either sends the
        full pool set upstream (connection open) or asks the feed to connect
        (the replay on open will include it).
        """
        asset = normalize_asset_id(asset_id)
        async with self._asset_locks.hold(asset):
            sub = self._subscriptions.get(asset)
            if sub is not None:
                sub.interests[(viewer, channel)] += 1
                logger.debug(
                    "%s: viewer %s added (%s), %d viewers",
                    asset,
                    viewer.viewer_id,
                    channel.value,
                    sub.viewer_count,
                )
                return sub.viewer_count

            pools = await self._resolver.resolve(asset)
            async with self._lock:
                sub = Subscription(asset_id=asset, pools=tuple(pools))
                sub.interests[(viewer, channel)] += 1
                self._subscriptions[asset] = sub
                self._pool_index.setdefault(sub.pool.address, set()).add(asset)
                logger.info("Subscribed %s on pool %s", asset, sub.pool.address)

                if self._feed.is_open:
                    await self._feed.subscribe_pools(self.active_pools())
                else:
                    self._feed.connect()
            return sub.viewer_count

    async def unsubscribe(self, asset_id: str, viewer: Viewer, channel: Channel = Channel.QUOTES) -> int:
        """Drop one interest. No-op if the viewer holds none for this asset.

        Returns the viewer count afterwards; 0 means the subscription ended.
        """
        asset = normalize_asset_id(asset_id)
        async with self._asset_locks.hold(asset):
            sub = self._subscriptions.get(asset)
            if sub is None:
                return 0
            key = (viewer, channel)
            if key not in sub.interests:
                return sub.viewer_count

            sub.interests[key] -= 1
            if sub.interests[key] <= 0:
                del sub.interests[key]
            if sub.viewer_count > 0:
                logger.debug(
                    "%s: viewer %s removed (%s), %d viewers",
                    asset,
                    viewer.viewer_id,
                    channel.value,
                    sub.viewer_count,
                )
                return sub.viewer_count

            async with self._lock:
                await self._remove(sub)
            return 0

    async def drop_viewer(self, viewer: Viewer) -> list[str]:
        """Remove every interest a viewer holds. Returns assets whose subscription ended."""
        ended: list[str] = []
        held = [
            asset for asset, sub in self._subscriptions.items() if any(v is viewer for v, _ in sub.interests)
        ]
        for asset in held:
            async with self._asset_locks.hold(asset):
                sub = self._subscriptions.get(asset)
                if sub is None:
                    continue
                for key in [k for k in sub.interests if k[0] is viewer]:
                    del sub.interests[key]
                if sub.viewer_count == 0:
                    async with self._lock:
                        await self._remove(sub)
                    ended.append(asset)
        return ended

    async def replay(self) -> None:
        """Re-declare every active pool upstream (called when the feed opens)."""
        async with self._lock:
            pools = self.active_pools()
            if not pools:
                return
            await self._feed.subscribe_pools(pools)
            logger.info("Replayed %d pool(s) for %d asset(s)", len(pools), len(self._subscriptions))

    # --- Queries ---

    def get(self, asset_id: str) -> Subscription | None:
        return self._subscriptions.get(normalize_asset_id(asset_id))

    def assets_for_pool(self, pool_address: str) -> set[str]:
        return set(self._pool_index.get(pool_address, ()))

    def viewers_for(self, asset_id: str, channel: Channel) -> list[Viewer]:
        """Snapshot of the viewers to deliver to; safe to iterate while others mutate."""
        sub = self._subscriptions.get(asset_id)
        return sub.viewers(channel) if sub else []

    def active_pools(self) -> list[PoolRef]:
        """Deduplicated primary pools of every active subscription."""
        pools: dict[str, PoolRef] = {}
        for sub in self._subscriptions.values():
            pools.setdefault(sub.pool.address, sub.pool)
        return list(pools.values())

    def snapshot(self) -> list[dict]:
        return [sub.to_dict() for sub in self._subscriptions.values()]

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, asset_id: str) -> bool:
        return normalize_asset_id(asset_id) in self._subscriptions

    # --- Internal ---

    async def _remove(self, sub: Subscription) -> None:
        """Delete a subscription and drop its pool upstream if no other asset uses it.

        Caller holds ``self._lock``.
        """
        del self._subscriptions[sub.asset_id]
        address = sub.pool.address
        owners = self._pool_index.get(address)
        if owners is not None:
            owners.discard(sub.asset_id)
            if not owners:
                del self._pool_index[address]
        logger.info("Unsubscribed %s from pool %s", sub.asset_id, address)

        if address in self._pool_index:
            return  # Still backing another asset
        if self._feed.is_open:
            await self._feed.unsubscribe_pools([sub.pool])
