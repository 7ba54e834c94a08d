"""
sparkbot - deposit auto-claim and swap sniping for Spark wallets

Watches on-chain deposit addresses, claims matured deposits into the
layer-2 wallet, and executes slippage-bounded swaps against the best
available liquidity pool.
"""

__version__ = "0.3.0"

from sparkbot.models import (
    ConfirmedUtxo,
    DepositCandidate,
    PoolDescriptor,
    RouteCandidate,
    SwapIntent,
    Utxo,
)

__all__ = [
    "Utxo",
    "ConfirmedUtxo",
    "DepositCandidate",
    "PoolDescriptor",
    "RouteCandidate",
    "SwapIntent",
]
