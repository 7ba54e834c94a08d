"""
Common CLI components for sparkbot.

Architecture:
- Setup functions: logging and settings initialization
- Resolver functions: take CLI args + settings and return resolved values
- Builders: turn resolved settings into the explorer client, the
  collaborators and the deduplication store

Configuration problems raise ``ConfigurationError``; the CLI reports them
and exits with status 1 before any network activity.

Usage:
    from sparkbot.cli_common import resolve_network_settings, setup_cli

    @app.command()
    def my_command(
        network: Annotated[str | None, typer.Option("--network")] = None,
        ...
    ):
        settings = setup_cli(log_level)
        resolved = resolve_network_settings(settings, network=network)
"""

from __future__ import annotations

import importlib
import inspect
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from sparkbot.backends.mempool import ChainDataClient, ExplorerEndpoint
from sparkbot.collaborators import AmmCollaborator, Collaborators, WalletCollaborator
from sparkbot.deduplication import FileSeenTxids, SeenStore, SeenTxids
from sparkbot.models import NetworkType
from sparkbot.settings import (
    DEFAULT_EXPLORER_URLS,
    SparkbotSettings,
    get_settings,
    reset_settings,
)

SEEN_TXIDS_FILENAME = "seen_txids.json"


class ConfigurationError(Exception):
    """Missing or invalid configuration; fatal before any network activity."""


# =============================================================================
# Resolved Settings Dataclasses
# =============================================================================


@dataclass
class ResolvedNetworkSettings:
    """Resolved network and explorer settings ready for use."""

    network: NetworkType
    explorer_urls: list[str]
    explorer_username: str = ""
    explorer_password: str = ""
    http_timeout: float = 30.0
    fallback_urls: list[str] = field(default_factory=list)


# =============================================================================
# Setup Functions
# =============================================================================


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None) -> SparkbotSettings:
    """
    Common CLI setup: reset settings cache, configure logging, return settings.

    Log level priority: CLI argument > settings (env/config) > default "INFO"
    """
    reset_settings()
    settings = get_settings()

    effective_log_level = log_level if log_level is not None else settings.logging.level
    setup_logging(effective_log_level)

    return settings


# =============================================================================
# Resolution Functions
# =============================================================================


def resolve_network_settings(
    settings: SparkbotSettings,
    *,
    network: NetworkType | str | None = None,
    explorer_urls: list[str] | None = None,
) -> ResolvedNetworkSettings:
    """
    Resolve network settings with priority: CLI > Settings (env + config) > Defaults.

    Configured explorers come first; the network's public explorer is
    appended as the last fallback unless already listed.

    Raises:
        ConfigurationError: unknown network name
    """
    if network is not None:
        try:
            resolved_network = NetworkType(network)
        except ValueError as e:
            raise ConfigurationError(f"Unknown network: {network}") from e
    else:
        resolved_network = settings.network_config.network

    defaults = DEFAULT_EXPLORER_URLS.get(resolved_network.value, [])
    if explorer_urls:
        urls = list(explorer_urls)
    elif settings.network_config.explorer_urls:
        urls = list(settings.network_config.explorer_urls)
    else:
        urls = list(defaults)

    fallback = [u for u in defaults if u.rstrip("/") not in {x.rstrip("/") for x in urls}]
    if not urls and not fallback:
        raise ConfigurationError(f"No explorer URL configured for {resolved_network.value}")

    return ResolvedNetworkSettings(
        network=resolved_network,
        explorer_urls=urls,
        explorer_username=settings.network_config.explorer_username,
        explorer_password=settings.network_config.explorer_password.get_secret_value(),
        http_timeout=settings.network_config.http_timeout,
        fallback_urls=fallback,
    )


def require_mnemonic(settings: SparkbotSettings) -> str:
    """
    The configured wallet mnemonic.

    Raises:
        ConfigurationError: no mnemonic configured
    """
    mnemonic = settings.wallet.mnemonic.get_secret_value().strip()
    if not mnemonic:
        raise ConfigurationError(
            "No wallet mnemonic configured. Set WALLET__MNEMONIC or [wallet] mnemonic."
        )
    return mnemonic


def resolve_factory(path: str) -> Any:
    """
    Import the collaborator factory named by ``module:callable``.

    Raises:
        ConfigurationError: empty, malformed or unimportable path
    """
    if not path:
        raise ConfigurationError(
            "No wallet factory configured. Set WALLET__FACTORY or pass --factory module:callable."
        )
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Factory must look like 'module:callable', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import factory module {module_name}: {e}") from e

    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise ConfigurationError(f"Factory {path} not found")
    if not callable(target):
        raise ConfigurationError(f"Factory {path} is not callable")
    return target


# =============================================================================
# Builders
# =============================================================================


def build_endpoints(resolved: ResolvedNetworkSettings) -> list[ExplorerEndpoint]:
    """Explorer endpoints in failover order; basic auth goes to the first one only."""
    auth: httpx.Auth | None = None
    if resolved.explorer_username:
        auth = httpx.BasicAuth(resolved.explorer_username, resolved.explorer_password)

    endpoints = [
        ExplorerEndpoint(url, auth if i == 0 else None)
        for i, url in enumerate(resolved.explorer_urls)
    ]
    endpoints.extend(ExplorerEndpoint(url) for url in resolved.fallback_urls)
    return endpoints


def build_chain_client(
    resolved: ResolvedNetworkSettings, transport: httpx.AsyncBaseTransport | None = None
) -> ChainDataClient:
    endpoints = build_endpoints(resolved)
    logger.debug(f"Explorer endpoints: {', '.join(e.base_url for e in endpoints)}")
    return ChainDataClient(endpoints, timeout=resolved.http_timeout, transport=transport)


def build_seen_store(settings: SparkbotSettings) -> SeenStore:
    """In-memory seen set, or a file-backed one when ``deposits.persist_seen`` is on."""
    if settings.deposits.persist_seen:
        return FileSeenTxids(Path(settings.get_data_dir()) / SEEN_TXIDS_FILENAME)
    return SeenTxids()


def _as_collaborators(built: Any) -> Collaborators:
    if isinstance(built, Collaborators):
        return built
    if isinstance(built, tuple) and len(built) == 2:
        return Collaborators(wallet=built[0], amm=built[1])
    if isinstance(built, dict) and "wallet" in built:
        return Collaborators(wallet=built["wallet"], amm=built.get("amm"))
    return Collaborators(wallet=built)


def _check_collaborators(collaborators: Collaborators) -> None:
    if not isinstance(collaborators.wallet, WalletCollaborator):
        raise ConfigurationError(
            f"Wallet factory returned {type(collaborators.wallet).__name__}, "
            "which has no getStaticDepositAddress()"
        )
    if collaborators.amm is not None and not isinstance(collaborators.amm, AmmCollaborator):
        raise ConfigurationError(
            f"AMM client {type(collaborators.amm).__name__} lacks the pool and swap methods"
        )


async def load_collaborators(
    settings: SparkbotSettings,
    network: NetworkType,
    factory_path: str | None = None,
) -> Collaborators:
    """
    Build the wallet (and AMM) collaborators through the configured factory.

    The factory is called as ``factory(mnemonic=..., network=...)`` and may
    return ``Collaborators``, a ``(wallet, amm)`` tuple, a dict or a bare
    wallet, directly or as an awaitable.

    Raises:
        ConfigurationError: missing mnemonic or factory, or the factory built
            objects without the required methods
    """
    mnemonic = require_mnemonic(settings)
    factory = resolve_factory(factory_path or settings.wallet.factory)

    built = factory(mnemonic=mnemonic, network=network.value)
    if inspect.isawaitable(built):
        built = await built
    collaborators = _as_collaborators(built)
    _check_collaborators(collaborators)
    logger.debug(
        f"Collaborators ready: wallet={type(collaborators.wallet).__name__} "
        f"amm={type(collaborators.amm).__name__ if collaborators.amm is not None else 'none'}"
    )
    return collaborators
