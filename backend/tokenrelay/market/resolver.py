"""Maps an asset to the pool(s) the upstream feed should subscribe on."""

from __future__ import annotations

import logging

from .assets import DEFAULT_CHAIN, MAX_POOLS_PER_ASSET, is_native_asset, normalize_asset_id
from .errors import ProviderError
from .interface import QuoteGateway
from .models import PoolRef

logger = logging.getLogger(__name__)


class PoolResolver:
    """Ranks discovered pools by liquidity and never fails.

    Ranking rules:
      - generic asset: top ``MAX_POOLS_PER_ASSET`` by descending liquidity
      - native asset: only the single deepest pool
      - no pools / provider error: the asset address itself, on the default
        chain
    """

    def __init__(self, gateway: QuoteGateway, default_chain: str = DEFAULT_CHAIN) -> None:
        self._gateway = gateway
        self._default_chain = default_chain

    async def resolve(self, asset_id: str) -> list[PoolRef]:
        asset = normalize_asset_id(asset_id)
        try:
            listings = await self._gateway.discover_pools(asset, self._default_chain)
        except ProviderError as e:
            logger.warning("Pool discovery failed for %s, using the address directly: %s", asset, e)
            return [self._fallback(asset)]
        except Exception:
            logger.exception("Unexpected pool discovery error for %s, using the address directly", asset)
            return [self._fallback(asset)]

        if not listings:
            logger.info("No pools found for %s, using the address directly", asset)
            return [self._fallback(asset)]

        # sorted() is stable: equal liquidity keeps provider order
        ranked = sorted(listings, key=lambda listing: listing.liquidity, reverse=True)
        limit = 1 if is_native_asset(asset) else MAX_POOLS_PER_ASSET
        pools = [listing.pool for listing in ranked[:limit]]
        logger.debug("Resolved %s to %d pool(s): %s", asset, len(pools), [p.address for p in pools])
        return pools

    def _fallback(self, asset_id: str) -> PoolRef:
        return PoolRef(chain=self._default_chain, address=asset_id)
