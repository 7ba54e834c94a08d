"""
Route resolution: which pool to swap the base asset into for a target.

A target is either a literal pool id (a compressed public key) or a token
identifier. For a token every pool listing it on either side is fetched,
pools not paired with the base asset are dropped, and each survivor is
simulated for the full input amount. The largest simulated output wins;
on equal outputs the pool listed first is kept.

``None`` from the resolver means "not ready yet", never an error.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, TypeVar

from loguru import logger

from sparkbot.collaborators import AmmAdapter, error_message
from sparkbot.encoding import is_pool_id, is_token_identifier, token_lookup_keys
from sparkbot.models import PoolDescriptor, RouteCandidate
from sparkbot.settings import BTC_ASSET_PUBKEY

T = TypeVar("T")

DEFAULT_FANOUT = 4
DEFAULT_QUERY_LIMIT = 50


class PoolRouteResolver:
    """
    Resolves targets into a ``RouteCandidate`` against a fixed base asset.

    Args:
        amm: AMM collaborator adapter
        base_asset_address: Asset swapped in (BTC by default)
        fanout: Maximum concurrent collaborator calls during discovery
        query_limit: Page size for pool listings
    """

    def __init__(
        self,
        amm: AmmAdapter,
        base_asset_address: str = BTC_ASSET_PUBKEY,
        fanout: int = DEFAULT_FANOUT,
        query_limit: int = DEFAULT_QUERY_LIMIT,
    ):
        if fanout < 1:
            raise ValueError("fanout must be at least 1")
        self.amm = amm
        self.base_asset_address = base_asset_address
        self.fanout = fanout
        self.query_limit = query_limit

    async def _bounded(
        self, calls: list[Callable[[], Awaitable[T]]]
    ) -> list[T | BaseException]:
        semaphore = asyncio.Semaphore(self.fanout)

        async def run(call: Callable[[], Awaitable[T]]) -> T:
            async with semaphore:
                return await call()

        return await asyncio.gather(*(run(call) for call in calls), return_exceptions=True)

    def route_for_pool(self, pool: PoolDescriptor) -> RouteCandidate | None:
        """Route through ``pool``, or None if it is not paired with the base asset."""
        if not pool.contains(self.base_asset_address):
            return None
        return RouteCandidate(
            pool_id=pool.lp_public_key,
            asset_out_address=pool.counter_asset(self.base_asset_address),
            curve_type=pool.curve_type,
        )

    async def pools_for_asset(self, asset_addresses: list[str]) -> list[PoolDescriptor]:
        """
        Pools listing any of ``asset_addresses`` on either side.

        Failed listings are skipped. The result keeps listing order and
        holds each pool once.
        """
        filters: list[dict[str, Any]] = []
        for address in asset_addresses:
            filters.append({"limit": self.query_limit, "assetAAddress": address})
            filters.append({"limit": self.query_limit, "assetBAddress": address})

        results = await self._bounded([partial(self.amm.list_pools, **f) for f in filters])

        pools: dict[str, PoolDescriptor] = {}
        for query, result in zip(filters, results, strict=True):
            if isinstance(result, BaseException):
                logger.debug(f"listPools {query} failed: {error_message(result)}")
                continue
            for pool in result:
                pools.setdefault(pool.lp_public_key, pool)
        return list(pools.values())

    async def best_route(
        self, pools: list[PoolDescriptor], amount_in: int
    ) -> tuple[RouteCandidate, int] | None:
        """
        Simulate ``amount_in`` through every base-paired pool and keep the best.

        Returns:
            (route, simulated amount out), or None if no simulation succeeded
        """
        routes = [r for r in (self.route_for_pool(p) for p in pools) if r is not None]
        if not routes:
            return None

        quotes = await self._bounded(
            [
                partial(
                    self.amm.simulate,
                    r.pool_id,
                    self.base_asset_address,
                    r.asset_out_address,
                    amount_in,
                )
                for r in routes
            ]
        )

        best: tuple[RouteCandidate, int] | None = None
        for route, quote in zip(routes, quotes, strict=True):
            if isinstance(quote, BaseException):
                logger.debug(f"Simulation on {route.pool_id[:12]} failed: {error_message(quote)}")
                continue
            if best is None or quote.amount_out > best[1]:
                best = (route, quote.amount_out)
        return best

    async def resolve(self, target: str, amount_in: int) -> RouteCandidate | None:
        """Resolve a pool id or token identifier into a route, or None if not ready."""
        if is_pool_id(target):
            try:
                pool = await self.amm.get_pool(target)
            except Exception as e:
                logger.debug(f"getPool {target[:12]} failed: {error_message(e)}")
                return None
            route = self.route_for_pool(pool)
            if route is None:
                logger.warning(f"Pool {target[:12]} is not paired with the base asset")
            return route

        if is_token_identifier(target):
            pools = await self.pools_for_asset(token_lookup_keys(target))
            best = await self.best_route(pools, amount_in)
            if best is None:
                return None
            route, amount_out = best
            logger.info(
                f"Route for {target[:16]}: pool {route.pool_id[:12]} "
                f"({route.curve_type.value if route.curve_type else 'unknown'}) "
                f"simulates {amount_out} out of {len(pools)} pool(s)"
            )
            return route

        logger.warning(f"Target {target[:16]} is neither a pool id nor a token identifier")
        return None

    async def resolve_from_pool(self, pool_id: str, amount_in: int) -> RouteCandidate | None:
        """
        Best alternative route for the token traded in ``pool_id``.

        Used when the pinned pool cannot fill the swap: the failing pool's
        non-base asset is re-resolved across all its pools.
        """
        try:
            pool = await self.amm.get_pool(pool_id)
        except Exception as e:
            logger.debug(f"getPool {pool_id[:12]} failed: {error_message(e)}")
            return None

        token = pool.counter_asset(self.base_asset_address)
        best = await self.best_route(await self.pools_for_asset([token]), amount_in)
        return best[0] if best is not None else None
