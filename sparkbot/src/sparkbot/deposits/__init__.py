"""
Deposit detection and claiming.
"""

from sparkbot.deposits.claim import (
    NO_COMPATIBLE_METHOD,
    ClaimAttemptFailure,
    ClaimError,
    ClaimExecutor,
    ClaimResult,
    DepositReference,
    FeeCapExceededError,
    build_claim_plan,
)
from sparkbot.deposits.pipeline import ClaimOutcome, DepositClaimPipeline, DepositState
from sparkbot.deposits.scanner import DepositScanner, claim_order, is_mature

__all__ = [
    "NO_COMPATIBLE_METHOD",
    "ClaimAttemptFailure",
    "ClaimError",
    "ClaimExecutor",
    "ClaimOutcome",
    "ClaimResult",
    "DepositClaimPipeline",
    "DepositReference",
    "DepositScanner",
    "DepositState",
    "FeeCapExceededError",
    "build_claim_plan",
    "claim_order",
    "is_mature",
]
