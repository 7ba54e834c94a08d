"""
Pool routing and swap execution.
"""

from sparkbot.swap.executor import (
    InsufficientLiquidityError,
    NotReady,
    SwapError,
    SwapExecutor,
    SwapPlan,
    SwapTimeoutError,
    default_slippage_bps,
    is_insufficient_liquidity,
    min_amount_out,
)
from sparkbot.swap.pipeline import ReadinessDetector, SwapPipeline, SwapResult
from sparkbot.swap.resolver import PoolRouteResolver

__all__ = [
    "InsufficientLiquidityError",
    "NotReady",
    "PoolRouteResolver",
    "ReadinessDetector",
    "SwapError",
    "SwapExecutor",
    "SwapPipeline",
    "SwapPlan",
    "SwapResult",
    "SwapTimeoutError",
    "default_slippage_bps",
    "is_insufficient_liquidity",
    "min_amount_out",
]
