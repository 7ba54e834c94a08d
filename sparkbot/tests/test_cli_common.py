"""
Tests for the CLI common module.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from loguru import logger

from sparkbot.cli_common import (
    ConfigurationError,
    ResolvedNetworkSettings,
    build_endpoints,
    build_seen_store,
    load_collaborators,
    require_mnemonic,
    resolve_factory,
    resolve_network_settings,
    setup_cli,
    setup_logging,
)
from sparkbot.collaborators import Collaborators
from sparkbot.deduplication import FileSeenTxids, SeenTxids
from sparkbot.models import NetworkType
from sparkbot.settings import SparkbotSettings
from _sparkbot_test_helpers import FACTORY_CALLS, FakeAmm, fake_factory

MNEMONIC = "abandon " * 11 + "about"


class TestSetupLogging:
    def test_setup_logging_case_insensitive(self) -> None:
        setup_logging("trace")
        setup_logging("Debug")

    def test_cli_arg_overrides_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """CLI log level wins over LOGGING__LEVEL."""
        monkeypatch.setenv("LOGGING__LEVEL", "DEBUG")

        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            setup_cli(log_level="TRACE")

        assert mock_add.call_args[1]["level"] == "TRACE"

    def test_settings_level_used_without_cli_arg(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOGGING__LEVEL", "warning")

        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            settings = setup_cli()

        assert isinstance(settings, SparkbotSettings)
        assert mock_add.call_args[1]["level"] == "WARNING"


class TestResolveNetworkSettings:
    def test_defaults(self) -> None:
        resolved = resolve_network_settings(SparkbotSettings())
        assert resolved.network == NetworkType.MAINNET
        assert resolved.explorer_urls == ["https://mempool.space/api"]
        assert resolved.fallback_urls == []

    def test_cli_urls_keep_public_fallback(self) -> None:
        resolved = resolve_network_settings(
            SparkbotSettings(),
            network="signet",
            explorer_urls=["https://electrs.local/api"],
        )
        assert resolved.network == NetworkType.SIGNET
        assert resolved.explorer_urls == ["https://electrs.local/api"]
        assert resolved.fallback_urls == ["https://mempool.space/signet/api"]

    def test_configured_urls(self) -> None:
        settings = SparkbotSettings(
            network_config={
                "explorer_urls": ["https://a.example/api", "https://mempool.space/api/"],
                "explorer_username": "user",
                "explorer_password": "pw",
            }
        )
        resolved = resolve_network_settings(settings)
        assert resolved.explorer_urls == ["https://a.example/api", "https://mempool.space/api/"]
        assert resolved.fallback_urls == []
        assert resolved.explorer_password == "pw"

    def test_unknown_network(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown network"):
            resolve_network_settings(SparkbotSettings(), network="moonnet")


class TestBuilders:
    def test_basic_auth_only_on_first_endpoint(self) -> None:
        resolved = ResolvedNetworkSettings(
            network=NetworkType.MAINNET,
            explorer_urls=["https://a.example/api", "https://b.example/api"],
            explorer_username="user",
            explorer_password="pw",
            fallback_urls=["https://mempool.space/api"],
        )
        endpoints = build_endpoints(resolved)

        assert [e.base_url for e in endpoints] == [
            "https://a.example/api",
            "https://b.example/api",
            "https://mempool.space/api",
        ]
        assert isinstance(endpoints[0].auth, httpx.BasicAuth)
        assert endpoints[1].auth is None
        assert endpoints[2].auth is None

    def test_seen_store_in_memory_by_default(self) -> None:
        store = build_seen_store(SparkbotSettings())
        assert isinstance(store, SeenTxids)
        assert not isinstance(store, FileSeenTxids)

    def test_persistent_seen_store(self, tmp_path: Path) -> None:
        settings = SparkbotSettings(data_dir=tmp_path, deposits={"persist_seen": True})
        store = build_seen_store(settings)
        assert isinstance(store, FileSeenTxids)
        assert store.path == tmp_path / "seen_txids.json"


class TestCollaborators:
    def test_require_mnemonic(self) -> None:
        with pytest.raises(ConfigurationError, match="mnemonic"):
            require_mnemonic(SparkbotSettings())
        settings = SparkbotSettings(wallet={"mnemonic": f"  {MNEMONIC} "})
        assert require_mnemonic(settings) == MNEMONIC

    @pytest.mark.parametrize(
        "path,message",
        [
            ("", "No wallet factory"),
            ("no_colon", "module:callable"),
            ("not_a_real_module_xyz:build", "Cannot import"),
            ("_sparkbot_test_helpers:missing", "not found"),
            ("_sparkbot_test_helpers:TXID_A", "not callable"),
        ],
    )
    def test_resolve_factory_errors(self, path: str, message: str) -> None:
        with pytest.raises(ConfigurationError, match=message):
            resolve_factory(path)

    def test_resolve_factory(self) -> None:
        assert resolve_factory("_sparkbot_test_helpers:fake_factory") is fake_factory

    @pytest.mark.asyncio
    async def test_load_collaborators_from_tuple(self) -> None:
        FACTORY_CALLS.clear()
        settings = SparkbotSettings(
            wallet={"mnemonic": MNEMONIC, "factory": "_sparkbot_test_helpers:fake_factory"}
        )
        collaborators = await load_collaborators(settings, NetworkType.REGTEST)

        assert isinstance(collaborators, Collaborators)
        assert isinstance(collaborators.amm, FakeAmm)
        assert FACTORY_CALLS == [{"mnemonic": MNEMONIC, "network": "regtest"}]

    @pytest.mark.asyncio
    async def test_load_collaborators_from_async_factory(self) -> None:
        settings = SparkbotSettings(wallet={"mnemonic": MNEMONIC})
        collaborators = await load_collaborators(
            settings, NetworkType.MAINNET, "_sparkbot_test_helpers:async_fake_factory"
        )
        assert isinstance(collaborators.amm, FakeAmm)
        assert collaborators.wallet is not None

    @pytest.mark.asyncio
    async def test_wallet_without_deposit_address_rejected(self) -> None:
        settings = SparkbotSettings(wallet={"mnemonic": MNEMONIC})
        with pytest.raises(ConfigurationError, match="getStaticDepositAddress"):
            await load_collaborators(
                settings, NetworkType.MAINNET, "_sparkbot_test_helpers:addressless_factory"
            )

    @pytest.mark.asyncio
    async def test_missing_mnemonic_checked_before_factory(self) -> None:
        with pytest.raises(ConfigurationError, match="mnemonic"):
            await load_collaborators(SparkbotSettings(), NetworkType.MAINNET, "bogus")
