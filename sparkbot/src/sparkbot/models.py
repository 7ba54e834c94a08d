"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TXID_PATTERN = r"^[0-9a-fA-F]{64}$"
BPS_DENOMINATOR = 10_000


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class DepositKind(str, Enum):
    """Kind of watched deposit address."""

    STATIC = "static"  # Long-lived address, claimed with a quote step
    ACTIVE = "active"  # Single-use address, claimed directly


class CurveType(str, Enum):
    CONSTANT_PRODUCT = "CONSTANT_PRODUCT"
    SINGLE_SIDED = "SINGLE_SIDED"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> CurveType:
        """Map a collaborator-supplied curve label onto a known curve type."""
        label = str(value or "").upper()
        if "SINGLE" in label:
            return cls.SINGLE_SIDED
        if "CONSTANT" in label:
            return cls.CONSTANT_PRODUCT
        return cls.OTHER


class Utxo(BaseModel):
    """An unspent transaction output as reported by a block explorer."""

    model_config = ConfigDict(frozen=True)

    txid: str = Field(..., pattern=TXID_PATTERN)
    vout: int = Field(..., ge=0)
    value_sats: int = Field(default=0, ge=0)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


class ConfirmedUtxo(Utxo):
    """A UTXO annotated with its confirmation depth for one scan."""

    confirmations: int = Field(default=0, ge=0)
    required_confirmations: int = Field(..., ge=1)

    @property
    def mature(self) -> bool:
        return self.confirmations >= self.required_confirmations


class WatchedAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: DepositKind
    address: str = Field(..., min_length=1)


class DepositCandidate(BaseModel):
    """
    One observed deposit output on a watched address.

    The claim pipeline deduplicates on ``txid`` alone: a transaction counts
    as seen once any of its outputs has been observed.
    """

    model_config = ConfigDict(frozen=True)

    kind: DepositKind
    address: str
    utxo: ConfirmedUtxo

    @property
    def txid(self) -> str:
        return self.utxo.txid

    @property
    def vout(self) -> int:
        return self.utxo.vout

    @property
    def confirmations(self) -> int:
        return self.utxo.confirmations

    @property
    def required_confirmations(self) -> int:
        return self.utxo.required_confirmations

    @property
    def mature(self) -> bool:
        return self.utxo.mature

    def to_status(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "address": self.address,
            "txid": self.txid,
            "vout": self.vout,
            "value": self.utxo.value_sats,
            "confirmations": self.confirmations,
            "required": self.required_confirmations,
            "claimable": self.mature,
        }


class PoolDescriptor(BaseModel):
    """A liquidity pool as described by the AMM collaborator."""

    model_config = ConfigDict(frozen=True)

    pool_id: str
    asset_a_address: str
    asset_b_address: str
    curve_type: CurveType = CurveType.OTHER
    lp_public_key: str

    def contains(self, asset_address: str) -> bool:
        return asset_address in (self.asset_a_address, self.asset_b_address)

    def counter_asset(self, base_asset_address: str) -> str:
        """Return the side of the pool that is not the base asset."""
        if self.asset_a_address == base_asset_address:
            return self.asset_b_address
        return self.asset_a_address


class RouteCandidate(BaseModel):
    """A selected pool plus the asset received when swapping the base asset in."""

    model_config = ConfigDict(frozen=True)

    pool_id: str
    asset_out_address: str
    curve_type: CurveType | None = None


class SwapQuote(BaseModel):
    amount_out: int = Field(..., ge=0)


class SwapIntent(BaseModel):
    """The execution request submitted to the AMM collaborator."""

    pool_id: str
    asset_in_address: str
    asset_out_address: str
    amount_in: int = Field(..., gt=0)
    min_amount_out: int = Field(..., ge=0)
    max_slippage_bps: int = Field(..., ge=0, le=BPS_DENOMINATOR)

    def to_request(self) -> dict[str, Any]:
        # Amounts travel as decimal strings so they survive 64-bit overflow on the other side
        return {
            "poolId": self.pool_id,
            "assetInAddress": self.asset_in_address,
            "assetOutAddress": self.asset_out_address,
            "amountIn": str(self.amount_in),
            "minAmountOut": str(self.min_amount_out),
            "maxSlippageBps": self.max_slippage_bps,
        }


class SwapReceipt(BaseModel):
    request_id: str
    accepted: bool


class TokenBalance(BaseModel):
    """A token balance normalized at the collaborator boundary."""

    asset_id: str
    amount: int = Field(..., ge=0)  # minor units
    decimals: int | None = None
    ticker: str | None = None

    @property
    def label(self) -> str:
        return self.ticker or self.asset_id

    def format_amount(self) -> str:
        """Render the minor-unit amount with its decimal point."""
        if not self.decimals:
            return str(self.amount)
        raw = str(self.amount).rjust(self.decimals + 1, "0")
        whole, frac = raw[: -self.decimals], raw[-self.decimals :].rstrip("0")
        return f"{whole}.{frac}" if frac else whole


class WalletBalance(BaseModel):
    btc_sats: int = Field(default=0, ge=0)
    tokens: list[TokenBalance] = Field(default_factory=list)
