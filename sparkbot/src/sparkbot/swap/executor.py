"""
Slippage-bounded swap preparation and submission.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from loguru import logger

from sparkbot.collaborators import AmmAdapter, error_message
from sparkbot.models import BPS_DENOMINATOR, CurveType, RouteCandidate, SwapIntent, SwapReceipt
from sparkbot.swap.resolver import PoolRouteResolver

LIQUIDITY_ERROR_PATTERN = re.compile(r"FSAG-4201|Insufficient liquidity", re.IGNORECASE)

DEFAULT_SLIPPAGE_CONSTANT_PRODUCT_BPS = 300
DEFAULT_SLIPPAGE_SINGLE_SIDED_BPS = 700


class SwapError(Exception):
    """A swap could not be prepared or submitted."""


class InsufficientLiquidityError(SwapError):
    """The pool cannot fill the swap and no alternative pool was found."""


class SwapTimeoutError(SwapError):
    """The swap did not go through within its time budget."""

    def __init__(self, message: str, last_error: str = ""):
        super().__init__(message)
        self.last_error = last_error


def min_amount_out(amount_out: int, slippage_bps: int) -> int:
    """
    Smallest acceptable output for ``amount_out`` at ``slippage_bps``.

    Integer arithmetic only; the result is truncated, never rounded up.

    Example:
        >>> min_amount_out(950, 300)
        921
    """
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps must be within 0..{BPS_DENOMINATOR}, got {slippage_bps}")
    if amount_out < 0:
        raise ValueError("amount_out must be non-negative")
    return amount_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def default_slippage_bps(
    curve_type: CurveType | str | None,
    constant_product_bps: int = DEFAULT_SLIPPAGE_CONSTANT_PRODUCT_BPS,
    single_sided_bps: int = DEFAULT_SLIPPAGE_SINGLE_SIDED_BPS,
) -> int:
    """Single-sided curves get the wider slippage default, all others the constant-product one."""
    if CurveType.parse(curve_type) == CurveType.SINGLE_SIDED:
        return single_sided_bps
    return constant_product_bps


def is_insufficient_liquidity(error: BaseException | str) -> bool:
    message = error if isinstance(error, str) else error_message(error)
    return bool(LIQUIDITY_ERROR_PATTERN.search(message))


@dataclass
class NotReady:
    """The swap cannot run this cycle; try again after ``backoff`` seconds."""

    reason: str
    backoff: float | None = None


@dataclass
class SwapPlan:
    route: RouteCandidate
    amount_out: int
    intent: SwapIntent
    rerouted: bool = False


class SwapExecutor:
    """
    Turns a route into a submitted swap.

    Args:
        amm: AMM collaborator adapter
        resolver: Used for the one-shot re-route away from a pinned pool
        slippage_bps: Explicit slippage; overrides the per-curve defaults
        constant_product_bps: Default slippage for constant-product pools
        single_sided_bps: Default slippage for single-sided pools
        zero_output_backoff: Seconds to wait after a zero simulation
    """

    def __init__(
        self,
        amm: AmmAdapter,
        resolver: PoolRouteResolver,
        slippage_bps: int | None = None,
        constant_product_bps: int = DEFAULT_SLIPPAGE_CONSTANT_PRODUCT_BPS,
        single_sided_bps: int = DEFAULT_SLIPPAGE_SINGLE_SIDED_BPS,
        zero_output_backoff: float = 1.5,
    ):
        self.amm = amm
        self.resolver = resolver
        self.slippage_bps = slippage_bps
        self.constant_product_bps = constant_product_bps
        self.single_sided_bps = single_sided_bps
        self.zero_output_backoff = zero_output_backoff

    @property
    def asset_in_address(self) -> str:
        return self.resolver.base_asset_address

    def slippage_for(self, route: RouteCandidate) -> int:
        if self.slippage_bps is not None:
            return self.slippage_bps
        return default_slippage_bps(
            route.curve_type, self.constant_product_bps, self.single_sided_bps
        )

    async def simulate(self, route: RouteCandidate, amount_in: int) -> int:
        quote = await self.amm.simulate(
            route.pool_id, self.asset_in_address, route.asset_out_address, amount_in
        )
        return quote.amount_out

    async def prepare(
        self, route: RouteCandidate, amount_in: int, reroutable: bool = False
    ) -> SwapPlan | NotReady:
        """
        Simulate ``route`` and build the execution request.

        When ``reroutable`` (the target was a literal pool id) a liquidity
        failure or a zero simulation moves the swap once to the best other
        pool for the same token.

        Raises:
            InsufficientLiquidityError: the pool cannot fill the swap and
                there is nowhere to re-route
        """
        rerouted = False
        try:
            amount_out = await self.simulate(route, amount_in)
        except Exception as e:
            if not is_insufficient_liquidity(e):
                raise
            logger.warning(f"Pool {route.pool_id[:12]} lacks liquidity: {error_message(e)}")
            fallback = None
            if reroutable:
                fallback = await self.resolver.resolve_from_pool(route.pool_id, amount_in)
            if fallback is None:
                raise InsufficientLiquidityError(error_message(e)) from e
            logger.info(f"Fallback: switching to pool {fallback.pool_id[:12]} for better liquidity")
            route, rerouted = fallback, True
            amount_out = await self.simulate(route, amount_in)

        if amount_out <= 0 and reroutable and not rerouted:
            fallback = await self.resolver.resolve_from_pool(route.pool_id, amount_in)
            if fallback is not None:
                logger.info(f"Fallback: switching to pool {fallback.pool_id[:12]} (zero output)")
                route, rerouted = fallback, True
                amount_out = await self.simulate(route, amount_in)

        if amount_out <= 0:
            logger.warning(f"Simulation on {route.pool_id[:12]} returned zero output")
            return NotReady("simulation returned zero", backoff=self.zero_output_backoff)

        bps = self.slippage_for(route)
        minimum = min_amount_out(amount_out, bps)
        logger.info(f"Sim amountOut={amount_out} | minOut@{bps}bps={minimum}")
        intent = SwapIntent(
            pool_id=route.pool_id,
            asset_in_address=self.asset_in_address,
            asset_out_address=route.asset_out_address,
            amount_in=amount_in,
            min_amount_out=minimum,
            max_slippage_bps=bps,
        )
        return SwapPlan(route=route, amount_out=amount_out, intent=intent, rerouted=rerouted)

    async def execute(self, plan: SwapPlan) -> SwapReceipt:
        """Submit ``plan``. Never retried here; failures go to the caller's loop."""
        receipt = await self.amm.execute(plan.intent)
        logger.info(f"Swap submitted. requestId={receipt.request_id} accepted={receipt.accepted}")
        return receipt
