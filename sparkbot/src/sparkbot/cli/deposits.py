"""
Deposit commands: addresses, deposits, claim, watch.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Annotated, Any

import typer
from loguru import logger

from sparkbot.bitcoin import looks_like_raw_transaction, parse_transaction
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
from sparkbot.cli_common import ResolvedNetworkSettings, build_seen_store
from sparkbot.deposits.claim import ClaimError, ClaimExecutor, DepositReference
from sparkbot.deposits.pipeline import DepositClaimPipeline
from sparkbot.deposits.scanner import DepositScanner
from sparkbot.models import TXID_PATTERN
from sparkbot.settings import DepositMode, SparkbotSettings


def build_pipeline(
    runtime: Runtime,
    *,
    include_active: bool | None = None,
    block_on_pending: bool = True,
    label: str | None = None,
) -> DepositClaimPipeline:
    deposits = runtime.settings.deposits
    scanner = DepositScanner(
        runtime.chain,
        required_confirmations=deposits.min_confirmations,
        unknown_outspend=deposits.unknown_outspend,
    )
    return DepositClaimPipeline(
        wallet=runtime.wallet,
        scanner=scanner,
        executor=ClaimExecutor(runtime.wallet, max_fee=deposits.max_fee),
        seen=build_seen_store(runtime.settings),
        poll_interval=deposits.poll_interval,
        confirmation_poll_interval=deposits.confirmation_poll_interval,
        include_active=deposits.scan_active_addresses if include_active is None else include_active,
        block_on_pending=block_on_pending,
        label=deposits.watcher_name if label is None else label,
    )


@app.command()
def addresses(
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the wallet's deposit addresses (static and unused single-use)."""
    settings, resolved = prepare(log_level, network, explorer_url)
    emit_json(run_command(_addresses(settings, resolved, factory)))


async def _addresses(
    settings: SparkbotSettings, resolved: ResolvedNetworkSettings, factory: str | None
) -> dict[str, Any]:
    async with open_runtime(settings, resolved, factory) as runtime:
        wallet = runtime.wallet
        data: dict[str, Any] = {
            "network": resolved.network.value,
            "static": await wallet.static_deposit_addresses(),
            "unused": await wallet.unused_deposit_addresses(),
        }
        identity = await wallet.identity_public_key()
        if identity is not None:
            data["identityPublicKey"] = identity
        if settings.wallet.deposit_mode == DepositMode.SINGLE_USE:
            data["singleUse"] = await wallet.single_use_deposit_address()
        return data


@app.command("deposits")
def deposit_status(
    active: Annotated[
        bool, typer.Option("--active/--no-active", help="Include unused single-use addresses")
    ] = True,
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Report every deposit on the watched addresses with its confirmations."""
    settings, resolved = prepare(log_level, network, explorer_url)
    emit_json(run_command(_deposit_status(settings, resolved, factory, active)))


async def _deposit_status(
    settings: SparkbotSettings,
    resolved: ResolvedNetworkSettings,
    factory: str | None,
    active: bool,
) -> dict[str, Any]:
    async with open_runtime(settings, resolved, factory) as runtime:
        pipeline = build_pipeline(runtime, include_active=active)
        return {
            "success": True,
            "network": resolved.network.value,
            "required": settings.deposits.min_confirmations,
            "deposits": await pipeline.report(),
        }


def parse_claim_target(target: str, vout: int | None) -> DepositReference:
    """
    Build the reference for ``claim`` from a txid or a raw transaction.

    Raises:
        ValueError: neither a txid nor a parseable transaction
    """
    if looks_like_raw_transaction(target):
        tx = parse_transaction(target)
        value = None
        if vout is not None and vout < len(tx.outputs):
            value = tx.outputs[vout].value
        return DepositReference(txid=tx.txid, vout=vout, tx_hex=target.lower(), value_sats=value)
    if not re.match(TXID_PATTERN, target):
        raise ValueError(f"Not a txid or raw transaction: {target[:24]}")
    return DepositReference(txid=target.lower(), vout=vout)


@app.command()
def claim(
    target: Annotated[str, typer.Argument(help="Deposit txid or raw transaction hex")],
    vout: Annotated[int | None, typer.Argument(min=0, help="Output index of the deposit")] = None,
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Claim one deposit now, whatever its confirmation count."""
    settings, resolved = prepare(log_level, network, explorer_url)
    try:
        ref = parse_claim_target(target.strip(), vout)
    except ValueError as e:
        emit_json({"success": False, "error": str(e)})
        raise typer.Exit(1)

    result = run_command(_claim(settings, resolved, factory, ref))
    emit_json(result)
    if not result["success"]:
        raise typer.Exit(1)


async def _claim(
    settings: SparkbotSettings,
    resolved: ResolvedNetworkSettings,
    factory: str | None,
    ref: DepositReference,
) -> dict[str, Any]:
    async with open_runtime(settings, resolved, factory) as runtime:
        if ref.tx_hex is None:
            tx_hex = await runtime.chain.get_tx_hex(ref.txid)
            if tx_hex is None:
                logger.warning(f"Raw hex unavailable for {ref.txid}; claiming by txid")
            ref = replace(ref, tx_hex=tx_hex)

        executor = ClaimExecutor(runtime.wallet, max_fee=settings.deposits.max_fee)
        try:
            result = await executor.claim(ref)
        except ClaimError as e:
            logger.error(f"Claim failed for {ref.txid}: {e}")
            return {
                "success": False,
                "txid": ref.txid,
                "error": str(e),
                "attempts": [
                    {"method": a.method, "shape": a.shape, "error": a.message} for a in e.attempts
                ],
            }

        logger.info(f"Claimed {ref.txid} via {result.shape}")
        return {
            "success": True,
            "txid": ref.txid,
            "method": result.method,
            "shape": result.shape,
            "tx": result.result,
            "failedAttempts": len(result.failures),
        }


@app.command()
def watch(
    once: Annotated[bool, typer.Option("--once", help="Run a single scan and exit")] = False,
    wait: Annotated[
        bool,
        typer.Option(
            "--wait/--no-wait",
            help="Wait for pending deposits to mature (default) or claim them on a later scan",
        ),
    ] = True,
    active: Annotated[
        bool | None,
        typer.Option("--active/--no-active", help="Also watch unused single-use addresses"),
    ] = None,
    label: Annotated[str | None, typer.Option("--label", help="Prefix for log lines")] = None,
    network: NetworkOption = None,
    explorer_url: ExplorerOption = None,
    factory: FactoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Watch deposit addresses and claim deposits once they mature."""
    settings, resolved = prepare(log_level, network, explorer_url)
    result = run_command(_watch(settings, resolved, factory, once, wait, active, label))
    if result is not None:
        emit_json(result)


async def _watch(
    settings: SparkbotSettings,
    resolved: ResolvedNetworkSettings,
    factory: str | None,
    once: bool,
    wait: bool,
    active: bool | None,
    label: str | None,
) -> dict[str, Any] | None:
    async with open_runtime(settings, resolved, factory) as runtime:
        pipeline = build_pipeline(
            runtime, include_active=active, block_on_pending=wait, label=label
        )
        watched = await runtime.wallet.watched_addresses(pipeline.include_active)
        for entry in watched:
            logger.info(f"Watching {entry.kind.value} address {entry.address}")
        if once:
            outcomes = await pipeline.scan_once()
            claimed = sum(1 for o in outcomes if o.claimed)
            logger.info(f"Scan complete: {len(outcomes)} new deposit(s), {claimed} claimed")
            return {
                "network": resolved.network.value,
                "required": settings.deposits.min_confirmations,
                "outcomes": [o.to_dict() for o in outcomes],
            }
        await pipeline.run()
        return None

