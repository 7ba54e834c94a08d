"""
Claiming matured deposits into the wallet.

Wallet SDK versions disagree on how a deposit is claimed: the method name,
whether the reference is a txid or the raw transaction, positional or
structured arguments, and whether a fee cap is passed. Claim strategies are
selected from the claim methods the wallet actually exposes:

- ``QuotedStaticClaim``: wallets with ``getClaimStaticDepositQuote`` claim a
  static deposit by fetching a quote and passing its signature back. A
  quote whose fee exceeds the cap ends the claim; nothing else is tried.
- ``ProbingClaim``: a ranked list of call variants is tried until one
  succeeds. Ranking:
    1. raw-hex references before txid references (when hex is known)
    2. within each, variants without a fee before fee-capped ones
    3. static-deposit methods, then generic, then taproot-specific

The first call that completes claims the deposit. Every failure is kept;
the last one is what gets reported.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from sparkbot.collaborators import STATIC_QUOTE_METHOD, WalletAdapter, error_message
from sparkbot.collaborators import field as record_field
from sparkbot.models import DepositKind

NO_COMPATIBLE_METHOD = "No compatible claim method"

NO_FEE_METHODS = ("claimStaticDeposit", "claimDeposit", "claimTaprootDeposit")
FEE_METHODS = ("claimStaticDepositWithMaxFee", "claimDeposit", "claimTaprootDepositWithMaxFee")


@dataclass(frozen=True)
class DepositReference:
    """What is known about the deposit being claimed."""

    txid: str
    vout: int | None = None
    tx_hex: str | None = None
    kind: DepositKind = DepositKind.STATIC
    value_sats: int | None = None


@dataclass(frozen=True)
class ClaimCall:
    method: str
    args: tuple[Any, ...]

    @property
    def shape(self) -> str:
        """Human-readable argument shape, without the (long) values."""
        parts = []
        for arg in self.args:
            if isinstance(arg, dict):
                parts.append("{" + ", ".join(arg) + "}")
            elif isinstance(arg, int):
                parts.append("maxFee")
            else:
                parts.append("ref")
        return f"{self.method}({', '.join(parts)})"

    def key(self) -> tuple[str, str]:
        return (self.method, repr(self.args))


@dataclass
class ClaimAttemptFailure:
    method: str
    shape: str
    message: str


@dataclass
class ClaimResult:
    method: str
    shape: str
    result: Any
    failures: list[ClaimAttemptFailure] = field(default_factory=list)


class ClaimError(Exception):
    """No claim variant succeeded. ``attempts`` holds every failure in order."""

    def __init__(self, message: str, attempts: list[ClaimAttemptFailure] | None = None):
        super().__init__(message)
        self.attempts = attempts or []


class FeeCapExceededError(ClaimError):
    """The wallet quoted a fee above the cap. No other claim variant is tried."""


def _reference_shapes(key: str, value: str) -> list[tuple[Any, ...]]:
    shapes: list[tuple[Any, ...]] = [(value,), ({key: value},)]
    if key == "txHex":
        shapes.append(({"transactionHex": value},))
    return shapes


def build_claim_plan(
    ref: DepositReference,
    max_fee: int,
    available: frozenset[str] | None = None,
) -> list[ClaimCall]:
    """
    Ranked, de-duplicated claim call variants for ``ref``.

    Args:
        ref: Deposit being claimed
        max_fee: Fee budget in sats passed to fee-capped variants
        available: If given, only variants whose method is in this set are kept
    """
    references: list[tuple[str, str]] = []
    if ref.tx_hex:
        references.append(("txHex", ref.tx_hex))
    references.append(("transactionId", ref.txid))

    plan: list[ClaimCall] = []
    for key, value in references:
        for method in NO_FEE_METHODS:
            plan.extend(ClaimCall(method, shape) for shape in _reference_shapes(key, value))
        for method in FEE_METHODS:
            plan.append(ClaimCall(method, (value, max_fee)))
            plan.append(ClaimCall(method, ({key: value, "maxFee": max_fee},)))

    unique: dict[tuple[str, str], ClaimCall] = {}
    for call in plan:
        if available is not None and call.method not in available:
            continue
        unique.setdefault(call.key(), call)
    return list(unique.values())


class ClaimStrategy(ABC):
    """A way of claiming a deposit, chosen by the wallet's capabilities."""

    name: str = ""

    @abstractmethod
    def supports(self, capabilities: frozenset[str], ref: DepositReference) -> bool:
        """Whether this strategy can run against a wallet with ``capabilities``."""

    @abstractmethod
    async def claim(
        self,
        wallet: WalletAdapter,
        ref: DepositReference,
        max_fee: int,
        failures: list[ClaimAttemptFailure],
    ) -> ClaimResult | None:
        """Claim ``ref``; append failures and return None if it could not."""


class QuotedStaticClaim(ClaimStrategy):
    """Quote-then-claim flow for static deposit addresses."""

    name = "quoted-static"

    def supports(self, capabilities: frozenset[str], ref: DepositReference) -> bool:
        return (
            ref.kind == DepositKind.STATIC
            and ref.vout is not None
            and STATIC_QUOTE_METHOD in capabilities
            and "claimStaticDeposit" in capabilities
        )

    async def claim(
        self,
        wallet: WalletAdapter,
        ref: DepositReference,
        max_fee: int,
        failures: list[ClaimAttemptFailure],
    ) -> ClaimResult | None:
        shape = f"{STATIC_QUOTE_METHOD}(txid, vout) + claimStaticDeposit({{quote}})"
        try:
            quote = await wallet.call(STATIC_QUOTE_METHOD, ref.txid, ref.vout)
            credit = int(record_field(quote, "creditAmountSats", "credit_amount_sats"))
        except Exception as e:
            logger.debug(f"{STATIC_QUOTE_METHOD} failed: {error_message(e)}")
            failures.append(ClaimAttemptFailure(STATIC_QUOTE_METHOD, shape, error_message(e)))
            return None

        if ref.value_sats is not None and ref.value_sats - credit > max_fee:
            message = f"Quoted fee {ref.value_sats - credit} sats exceeds max fee {max_fee}"
            logger.warning(f"Not claiming {ref.txid}: {message}")
            failures.append(ClaimAttemptFailure(STATIC_QUOTE_METHOD, shape, message))
            raise FeeCapExceededError(message, list(failures))

        try:
            request = {
                "transactionId": ref.txid,
                "creditAmountSats": credit,
                "sspSignature": record_field(quote, "signature", "sspSignature"),
                "outputIndex": record_field(quote, "outputIndex", default=ref.vout),
            }
            result = await wallet.call("claimStaticDeposit", request)
        except Exception as e:
            logger.debug(f"{shape} failed: {error_message(e)}")
            failures.append(ClaimAttemptFailure("claimStaticDeposit", shape, error_message(e)))
            return None
        return ClaimResult("claimStaticDeposit", shape, result, list(failures))


class ProbingClaim(ClaimStrategy):
    """Ranked trial of claim call variants."""

    name = "probing"

    def supports(self, capabilities: frozenset[str], ref: DepositReference) -> bool:
        return any(m in capabilities for m in (*NO_FEE_METHODS, *FEE_METHODS))

    async def claim(
        self,
        wallet: WalletAdapter,
        ref: DepositReference,
        max_fee: int,
        failures: list[ClaimAttemptFailure],
    ) -> ClaimResult | None:
        for call in build_claim_plan(ref, max_fee, wallet.claim_capabilities()):
            try:
                result = await wallet.call(call.method, *call.args)
            except Exception as e:
                logger.debug(f"{call.shape} failed: {error_message(e)}")
                failures.append(ClaimAttemptFailure(call.method, call.shape, error_message(e)))
                continue
            return ClaimResult(call.method, call.shape, result, list(failures))
        return None


DEFAULT_STRATEGIES: tuple[ClaimStrategy, ...] = (QuotedStaticClaim(), ProbingClaim())


class ClaimExecutor:
    """Claims one deposit against the wallet collaborator."""

    def __init__(
        self,
        wallet: WalletAdapter,
        max_fee: int,
        strategies: tuple[ClaimStrategy, ...] = DEFAULT_STRATEGIES,
    ):
        self.wallet = wallet
        self.max_fee = max_fee
        self.strategies = strategies

    async def claim(self, ref: DepositReference) -> ClaimResult:
        """
        Claim ``ref``.

        Raises:
            FeeCapExceededError: the quoted fee is above ``max_fee``.
            ClaimError: every variant failed (message of the last failure), or
                the wallet exposes no claim method ("No compatible claim method").
        """
        capabilities = self.wallet.claim_capabilities()
        failures: list[ClaimAttemptFailure] = []

        for strategy in self.strategies:
            if not strategy.supports(capabilities, ref):
                continue
            result = await strategy.claim(self.wallet, ref, self.max_fee, failures)
            if result is not None:
                if failures:
                    logger.debug(f"Claim of {ref.txid} succeeded after {len(failures)} failure(s)")
                return result

        if not failures:
            raise ClaimError(NO_COMPATIBLE_METHOD)
        raise ClaimError(failures[-1].message, failures)
