"""
Boundary to the external wallet and AMM collaborators.

Both collaborators are bridges to the Spark wallet SDK and the Flashnet
AMM SDK. Their method names mirror those SDKs (camelCase), their methods
may be sync or async, and their return values may be dicts or objects.
The adapters here are the only place that knows about any of that: they
dispatch calls, discover capabilities, and normalize responses into the
models in ``sparkbot.models``.
"""

from __future__ import annotations

import inspect
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from sparkbot.encoding import token_identifier_to_hex
from sparkbot.models import (
    CurveType,
    DepositKind,
    PoolDescriptor,
    SwapIntent,
    SwapQuote,
    SwapReceipt,
    TokenBalance,
    WalletBalance,
    WatchedAddress,
)

CLAIM_METHODS = (
    "claimStaticDeposit",
    "claimDeposit",
    "claimTaprootDeposit",
    "claimStaticDepositWithMaxFee",
    "claimTaprootDepositWithMaxFee",
)
STATIC_QUOTE_METHOD = "getClaimStaticDepositQuote"


class CollaboratorError(Exception):
    """A collaborator call failed or returned an unusable shape."""


class MethodUnavailableError(CollaboratorError):
    """The collaborator does not expose the requested method."""


@runtime_checkable
class WalletCollaborator(Protocol):
    """Minimal surface every wallet bridge exposes; claim methods are discovered."""

    def getStaticDepositAddress(self) -> Any: ...  # noqa: N802


@runtime_checkable
class AmmCollaborator(Protocol):
    def listPools(self, filters: dict[str, Any]) -> Any: ...  # noqa: N802

    def getPool(self, pool_id: str) -> Any: ...  # noqa: N802

    def simulateSwap(self, request: dict[str, Any]) -> Any: ...  # noqa: N802

    def executeSwap(self, request: dict[str, Any]) -> Any: ...  # noqa: N802

    def getBalance(self) -> Any: ...  # noqa: N802


@dataclass
class Collaborators:
    """What a wallet factory returns."""

    wallet: Any
    amm: Any | None = None


def has_method(target: Any, name: str) -> bool:
    return callable(getattr(target, name, None))


async def call_method(target: Any, name: str, *args: Any) -> Any:
    """Call ``target.name(*args)``, awaiting the result if it is awaitable."""
    method = getattr(target, name, None)
    if not callable(method):
        raise MethodUnavailableError(f"{type(target).__name__} has no method {name}")
    result = method(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def field(record: Any, *names: str, default: Any = None) -> Any:
    """First present value among ``names`` on a dict or object."""
    for name in names:
        if isinstance(record, dict):
            value = record.get(name)
        else:
            value = getattr(record, name, None)
        if value is not None:
            return value
    return default


def error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(str(value).strip())
    except ValueError:
        return int(float(value))


def parse_pool(raw: Any) -> PoolDescriptor:
    lp_public_key = field(raw, "lpPublicKey", "lp_public_key", "poolId", "pool_id")
    asset_a = field(raw, "assetAAddress", "asset_a_address")
    asset_b = field(raw, "assetBAddress", "asset_b_address")
    if not lp_public_key or not asset_a or not asset_b:
        raise CollaboratorError(f"Pool record missing identifiers: {raw!r}")
    return PoolDescriptor(
        pool_id=str(field(raw, "poolId", "pool_id", default=lp_public_key)),
        asset_a_address=str(asset_a),
        asset_b_address=str(asset_b),
        curve_type=CurveType.parse(field(raw, "curveType", "curve_type")),
        lp_public_key=str(lp_public_key),
    )


def _token_entries(raw: Any) -> Iterable[tuple[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        return raw.items()
    if hasattr(raw, "items"):
        return raw.items()
    entries: list[tuple[str, Any]] = []
    for entry in raw:
        if isinstance(entry, (tuple, list)) and len(entry) == 2:
            entries.append((str(entry[0]), entry[1]))
        else:
            key = field(entry, "tokenIdentifier", "tokenAddress", "assetId", "asset_id")
            if key:
                entries.append((str(key), entry))
    return entries


def normalize_token_balance(token_id: str, value: Any) -> TokenBalance:
    """Normalize one token balance entry into minor units plus decimals."""
    decimals: int | None = None
    ticker: str | None = None
    amount = value
    if not isinstance(value, (int, str)):
        amount = field(value, "balance", "amount", default=0)
        info = field(value, "tokenInfo", "token_info")
        if info is not None:
            raw_decimals = field(info, "tokenDecimals", "decimals")
            decimals = int(raw_decimals) if raw_decimals is not None else None
            ticker = field(info, "tokenSymbol", "tokenTicker", "tokenName")

    return TokenBalance(
        asset_id=token_identifier_to_hex(token_id) or token_id,
        amount=_as_int(amount),
        decimals=decimals,
        ticker=ticker,
    )


def normalize_balance(raw: Any) -> WalletBalance:
    """
    Normalize a balance response into ``WalletBalance``.

    Token entries that cannot be normalized are dropped.
    """
    tokens: list[TokenBalance] = []
    for token_id, value in _token_entries(field(raw, "tokenBalances", "token_balances")):
        try:
            tokens.append(normalize_token_balance(token_id, value))
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Skipping token balance {token_id}: {error_message(e)}")
    return WalletBalance(btc_sats=_as_int(field(raw, "balance", default=0)), tokens=tokens)


class WalletAdapter:
    """Typed access to the wallet collaborator."""

    def __init__(self, wallet: WalletCollaborator):
        self.wallet = wallet

    def has(self, method: str) -> bool:
        return has_method(self.wallet, method)

    async def call(self, method: str, *args: Any) -> Any:
        return await call_method(self.wallet, method, *args)

    def claim_capabilities(self) -> frozenset[str]:
        """Claim-related methods this wallet exposes."""
        return frozenset(m for m in (*CLAIM_METHODS, STATIC_QUOTE_METHOD) if self.has(m))

    async def balance(self) -> WalletBalance:
        return normalize_balance(await self.call("getBalance"))

    async def identity_public_key(self) -> str | None:
        if not self.has("getIdentityPublicKey"):
            return None
        try:
            return str(await self.call("getIdentityPublicKey"))
        except Exception as e:
            logger.warning(f"Identity public key unavailable: {error_message(e)}")
            return None

    async def static_deposit_addresses(self) -> list[str]:
        if self.has("queryStaticDepositAddresses"):
            try:
                addresses = await self.call("queryStaticDepositAddresses")
                if addresses:
                    return [str(a) for a in addresses]
            except Exception as e:
                logger.warning(f"queryStaticDepositAddresses failed: {error_message(e)}")
        try:
            return [str(await self.call("getStaticDepositAddress"))]
        except Exception as e:
            logger.warning(f"Static deposit address unavailable: {error_message(e)}")
            return []

    async def unused_deposit_addresses(self) -> list[str]:
        if not self.has("getUnusedDepositAddresses"):
            return []
        try:
            return [str(a) for a in await self.call("getUnusedDepositAddresses") or []]
        except Exception as e:
            logger.warning(f"Unused deposit addresses unavailable: {error_message(e)}")
            return []

    async def single_use_deposit_address(self) -> str | None:
        try:
            return str(await self.call("getSingleUseDepositAddress"))
        except Exception as e:
            logger.warning(f"Single-use deposit address unavailable: {error_message(e)}")
            return None

    async def watched_addresses(self, include_active: bool = False) -> list[WatchedAddress]:
        watched = [
            WatchedAddress(kind=DepositKind.STATIC, address=a)
            for a in await self.static_deposit_addresses()
        ]
        if include_active:
            watched.extend(
                WatchedAddress(kind=DepositKind.ACTIVE, address=a)
                for a in await self.unused_deposit_addresses()
            )
        return watched


class AmmAdapter:
    """Typed access to the AMM collaborator."""

    def __init__(self, client: AmmCollaborator):
        self.client = client

    async def initialize(self) -> None:
        """Authenticate / refresh the session if the client supports it."""
        if has_method(self.client, "initialize"):
            await call_method(self.client, "initialize")

    async def list_pools(self, **filters: Any) -> list[PoolDescriptor]:
        raw = await call_method(self.client, "listPools", filters)
        records = field(raw, "pools", default=raw if isinstance(raw, list) else [])
        pools: list[PoolDescriptor] = []
        for record in records or []:
            try:
                pools.append(parse_pool(record))
            except CollaboratorError as e:
                logger.debug(str(e))
        return pools

    async def get_pool(self, pool_id: str) -> PoolDescriptor:
        return parse_pool(await call_method(self.client, "getPool", pool_id))

    async def simulate(
        self, pool_id: str, asset_in_address: str, asset_out_address: str, amount_in: int
    ) -> SwapQuote:
        raw = await call_method(
            self.client,
            "simulateSwap",
            {
                "poolId": pool_id,
                "assetInAddress": asset_in_address,
                "assetOutAddress": asset_out_address,
                "amountIn": str(amount_in),
            },
        )
        amount_out = _as_int(field(raw, "amountOut", "amount_out", default=0))
        return SwapQuote(amount_out=max(0, amount_out))

    async def execute(self, intent: SwapIntent) -> SwapReceipt:
        raw = await call_method(self.client, "executeSwap", intent.to_request())
        return SwapReceipt(
            request_id=str(field(raw, "requestId", "request_id", default="")),
            accepted=bool(field(raw, "accepted", default=False)),
        )

    async def balance(self) -> WalletBalance:
        return normalize_balance(await call_method(self.client, "getBalance"))
