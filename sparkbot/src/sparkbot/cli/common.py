"""
Shared CLI option types and command plumbing.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, Any, TypeVar

import typer
from loguru import logger

from sparkbot.backends.mempool import ChainDataClient
from sparkbot.cli_common import (
    ConfigurationError,
    ResolvedNetworkSettings,
    build_chain_client,
    load_collaborators,
    resolve_network_settings,
    setup_cli,
)
from sparkbot.collaborators import (
    AmmAdapter,
    Collaborators,
    WalletAdapter,
    call_method,
    error_message,
    has_method,
)
from sparkbot.settings import SparkbotSettings

T = TypeVar("T")

EXIT_INTERRUPTED = 130

NetworkOption = Annotated[
    str | None,
    typer.Option("--network", "-n", help="Network: mainnet, testnet, signet, regtest"),
]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", "-l", help="Log level")]
ExplorerOption = Annotated[
    list[str] | None,
    typer.Option("--explorer-url", help="Explorer API base URL (repeatable, tried in order)"),
]
FactoryOption = Annotated[
    str | None,
    typer.Option("--factory", help="Collaborator factory as module:callable"),
]


@dataclass
class Runtime:
    """Everything a command needs once configuration has been resolved."""

    settings: SparkbotSettings
    network: ResolvedNetworkSettings
    collaborators: Collaborators
    chain: ChainDataClient

    @property
    def wallet(self) -> WalletAdapter:
        return WalletAdapter(self.collaborators.wallet)

    @property
    def amm(self) -> AmmAdapter:
        if self.collaborators.amm is None:
            raise ConfigurationError("The wallet factory did not provide an AMM client")
        return AmmAdapter(self.collaborators.amm)


def prepare(
    log_level: str | None,
    network: str | None,
    explorer_urls: list[str] | None,
) -> tuple[SparkbotSettings, ResolvedNetworkSettings]:
    """Settings plus resolved network; exits with status 1 on configuration errors."""
    settings = setup_cli(log_level)
    try:
        resolved = resolve_network_settings(settings, network=network, explorer_urls=explorer_urls)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    return settings, resolved


async def close_collaborators(collaborators: Collaborators) -> None:
    for target in (collaborators.amm, collaborators.wallet):
        if target is None:
            continue
        for method in ("cleanupConnections", "close"):
            if has_method(target, method):
                try:
                    await call_method(target, method)
                except Exception as e:
                    logger.debug(f"{type(target).__name__}.{method} failed: {error_message(e)}")
                break


@asynccontextmanager
async def open_runtime(
    settings: SparkbotSettings,
    network: ResolvedNetworkSettings,
    factory: str | None = None,
) -> AsyncIterator[Runtime]:
    collaborators = await load_collaborators(settings, network.network, factory)
    chain = build_chain_client(network)
    try:
        yield Runtime(settings, network, collaborators, chain)
    finally:
        await chain.close()
        await close_collaborators(collaborators)


def run_command(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run ``coro`` on a fresh event loop.

    Configuration errors exit with status 1, an operator interrupt with 130.
    """
    try:
        return asyncio.run(coro)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by operator")
        raise typer.Exit(EXIT_INTERRUPTED)


def emit_json(data: dict[str, Any]) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))
