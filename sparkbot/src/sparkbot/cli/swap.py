"""
Swap commands: balance, snipe, detect.
"""

from __future__ import annotations

from typing import Annotated, Any

import typer
from loguru import logger

from sparkbot.cli import app
from sparkbot.cli.common import (
    ExplorerOption,
    FactoryOption,
    LogLevelOption,
    NetworkOption,
    Runtime,
    emit_json,
    open_runtime,
    prepare,
    run_command,
)
from sparkbot.cli_common import ResolvedNetworkSettings
from sparkbot.collaborators import error_message
from sparkbot.models import BPS_DENOMINATOR, RouteCandidate, WalletBalance
from sparkbot.settings import SparkbotSettings
from sparkbot.swap.executor import SwapError, SwapExecutor
from sparkbot.swap.pipeline import ReadinessDetector, SwapPipeline
from sparkbot.swap.resolver import PoolRouteResolver


def build_resolver(runtime: Runtime) -> PoolRouteResolver:
    swap = runtime.settings.swap
    return PoolRouteResolver(
        runtime.amm,
        base_asset_address=swap.base_asset_address,
        fanout=swap.route_fanout,
        query_limit=swap.pool_query_limit,
    )


@app.command()
def balance(
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the BTC and token balances of the wallet."""
    settings, resolved = prepare(log_level, network, explorer_url)
    emit_json(run_command(_balance(settings, resolved, factory)))


async def _read_balance(runtime: Runtime) -> WalletBalance:
    """AMM balance when an AMM client exists, the wallet's otherwise or when it fails."""
    if runtime.collaborators.amm is not None:
        try:
            return await runtime.amm.balance()
        except Exception as e:
            if not runtime.wallet.has("getBalance"):
                raise
            logger.warning(f"AMM balance unavailable ({error_message(e)}); using wallet balance")
    return await runtime.wallet.balance()


async def _balance(
    settings: SparkbotSettings, resolved: ResolvedNetworkSettings, factory: str | None
) -> dict[str, Any]:
    async with open_runtime(settings, resolved, factory) as runtime:
        wallet_balance = await _read_balance(runtime)
        return {
            "btc_sats": wallet_balance.btc_sats,
            "tokens": [
                {
                    "asset_id": token.asset_id,
                    "ticker": token.ticker,
                    "amount": token.amount,
                    "decimals": token.decimals,
                    "formatted": token.format_amount(),
                }
                for token in wallet_balance.tokens
            ],
        }


@app.command()
def snipe(
    target: Annotated[str, typer.Argument(help="Token identifier (btkn...) or pool id")],
    amount: Annotated[int, typer.Option("--amount", "-a", min=1, help="Sats to swap in")],
    slippage: Annotated[
        int | None,
        typer.Option(
            "--slippage", min=0, max=BPS_DENOMINATOR, help="Slippage in bps (default per curve)"
        ),
    ] = None,
    pool: Annotated[
        str | None, typer.Option("--pool", help="Pinned pool id (skips route resolution)")
    ] = None,
    asset_out: Annotated[
        str | None, typer.Option("--asset-out", help="Asset received from the pinned pool")
    ] = None,
    dry_resolve: Annotated[
        bool, typer.Option("--dry-resolve", help="Resolve the route, print it, and exit")
    ] = False,
    dry_execute: Annotated[
        bool, typer.Option("--dry-execute", help="Print the swap request instead of submitting it")
    ] = False,
    skip_balance_check: Annotated[
        bool, typer.Option("--skip-balance-check", help="Do not wait for funds")
    ] = False,
    max_duration: Annotated[
        float | None,
        typer.Option("--max-duration", min=0.0, help="Give up after this many seconds"),
    ] = None,
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Swap BTC into TARGET through the best pool as soon as it is live."""
    settings, resolved = prepare(log_level, network, explorer_url)
    if (pool is None) != (asset_out is None):
        logger.error("--pool and --asset-out must be given together")
        raise typer.Exit(1)

    pinned = None
    if pool is not None and asset_out is not None:
        pinned = RouteCandidate(pool_id=pool, asset_out_address=asset_out)

    result = run_command(
        _snipe(
            settings,
            resolved,
            factory,
            target=target,
            amount=amount,
            slippage=slippage,
            pinned=pinned,
            dry_resolve=dry_resolve,
            dry_execute=dry_execute or settings.swap.dry_execute,
            skip_balance_check=skip_balance_check or settings.swap.skip_balance_check,
            max_duration=max_duration if max_duration is not None else settings.swap.max_duration,
        )
    )
    emit_json(result)
    if not result["success"]:
        raise typer.Exit(1)


async def _snipe(
    settings: SparkbotSettings,
    resolved: ResolvedNetworkSettings,
    factory: str | None,
    *,
    target: str,
    amount: int,
    slippage: int | None,
    pinned: RouteCandidate | None,
    dry_resolve: bool,
    dry_execute: bool,
    skip_balance_check: bool,
    max_duration: float,
) -> dict[str, Any]:
    swap = settings.swap
    async with open_runtime(settings, resolved, factory) as runtime:
        amm = runtime.amm
        resolver = build_resolver(runtime)

        if dry_resolve:
            await amm.initialize()
            route = await resolver.resolve(target, amount)
            if route is None:
                return {"success": False, "error": "Not resolved"}
            return {
                "success": True,
                "poolId": route.pool_id,
                "assetOutAddress": route.asset_out_address,
                "curveType": route.curve_type.value if route.curve_type else None,
            }

        executor = SwapExecutor(
            amm,
            resolver,
            slippage_bps=slippage,
            constant_product_bps=swap.slippage_bps_constant_product,
            single_sided_bps=swap.slippage_bps_single_sided,
            zero_output_backoff=swap.zero_output_backoff,
        )
        pipeline = SwapPipeline(
            amm,
            resolver,
            executor,
            retry_interval=swap.retry_interval,
            max_duration=max_duration,
            skip_balance_check=skip_balance_check,
            dry_execute=dry_execute,
        )
        try:
            result = await pipeline.run(target, amount, pinned)
        except SwapError as e:
            logger.error(str(e))
            return {"success": False, "error": str(e)}

        data = result.to_dict()
        data["success"] = result.dry_run or bool(result.receipt and result.receipt.accepted)
        return data


@app.command()
def detect(
    max_duration: Annotated[
        float | None,
        typer.Option("--max-duration", min=0.0, help="Give up after this many seconds"),
    ] = None,
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Poll the AMM until pools are listed consistently, then exit 0."""
    settings, resolved = prepare(log_level, network, explorer_url)
    if not run_command(_detect(settings, resolved, factory, max_duration)):
        raise typer.Exit(1)


async def _detect(
    settings: SparkbotSettings,
    resolved: ResolvedNetworkSettings,
    factory: str | None,
    max_duration: float | None,
) -> bool:
    detection = settings.detection
    async with open_runtime(settings, resolved, factory) as runtime:
        logger.info(
            f"Detector network={resolved.network.value} interval={detection.interval}s "
            f"need={detection.consecutive_successes}"
        )
        detector = ReadinessDetector(
            runtime.amm,
            interval=detection.interval,
            consecutive_successes=detection.consecutive_successes,
            probe_limit=detection.pool_probe_limit,
            max_duration=max_duration,
        )
        return await detector.run()
