"""
E2E tests for the sparkbot CLI commands.

Collaborators and the explorer client are replaced with in-memory fakes;
everything between the command line and those fakes is real.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from sparkbot.cli import app
from sparkbot.cli.deposits import parse_claim_target
from sparkbot.collaborators import Collaborators
from sparkbot.deposits.claim import NO_COMPATIBLE_METHOD
from sparkbot.settings import BTC_ASSET_PUBKEY
from _sparkbot_test_helpers import (
    DEPOSIT_ADDRESS,
    EXPLORER_URL,
    TOKEN_HEX,
    TOKEN_ID,
    TX_HEX,
    TXID_A,
    FakeAmm,
    confirmed_routes,
    make_chain,
    make_wallet,
    pool_record,
)

runner = CliRunner()

POOL_1 = "02" + "01" * 32
MNEMONIC = "abandon " * 11 + "about"


def invoke(*args: str):
    return runner.invoke(app, [*args, "--log-level", "CRITICAL"])


def output(result) -> dict[str, Any]:
    return json.loads(result.stdout)


@contextmanager
def fakes(
    wallet: Any = None, amm: Any = None, routes: dict[str, Any] | None = None
) -> Iterator[None]:
    built = Collaborators(wallet=wallet if wallet is not None else make_wallet(), amm=amm)
    with (
        patch("sparkbot.cli.common.load_collaborators", AsyncMock(return_value=built)),
        patch(
            "sparkbot.cli.common.build_chain_client",
            side_effect=lambda resolved: make_chain(routes or {}),
        ),
    ):
        yield


class TestConfiguration:
    def test_missing_mnemonic_exits_before_network(self):
        with patch("sparkbot.cli.common.build_chain_client") as build_chain:
            result = invoke("claim", TXID_A)
        assert result.exit_code == 1
        build_chain.assert_not_called()

    def test_unknown_network(self):
        result = invoke("balance", "--network", "moonnet")
        assert result.exit_code == 1

    def test_factory_from_command_line(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("WALLET__MNEMONIC", MNEMONIC)
        with patch("sparkbot.cli.common.build_chain_client", return_value=make_chain({})):
            result = invoke("addresses", "--factory", "_sparkbot_test_helpers:fake_factory")
        assert result.exit_code == 0, result.output
        assert output(result)["static"] == [DEPOSIT_ADDRESS]

    def test_config_init(self, tmp_path: Path):
        result = runner.invoke(app, ["config-init", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert (tmp_path / "config.toml").exists()

    def test_config_init_stdout(self):
        result = runner.invoke(app, ["config-init", "--stdout"])
        assert result.exit_code == 0
        assert "[swap]" in result.stdout


class TestDepositCommands:
    def test_addresses(self):
        wallet = make_wallet(
            getStaticDepositAddress=DEPOSIT_ADDRESS,
            getUnusedDepositAddresses=["bcrt1qunused"],
        )
        with fakes(wallet):
            result = invoke("addresses", "--network", "regtest")
        assert result.exit_code == 0, result.output
        assert output(result) == {
            "network": "regtest",
            "static": [DEPOSIT_ADDRESS],
            "unused": ["bcrt1qunused"],
        }

    def test_addresses_with_identity_key(self):
        wallet = make_wallet(
            getStaticDepositAddress=DEPOSIT_ADDRESS, getIdentityPublicKey="02" + "ee" * 32
        )
        with fakes(wallet):
            result = invoke("addresses")
        assert result.exit_code == 0, result.output
        assert output(result)["identityPublicKey"] == "02" + "ee" * 32

    def test_deposits_report(self):
        routes = {
            f"{EXPLORER_URL}/address/{DEPOSIT_ADDRESS}/utxo": [
                {"txid": TXID_A, "vout": 0, "value": 50_000}
            ],
            **confirmed_routes(TXID_A, block_height=100, tip=100),
        }
        with fakes(make_wallet(getStaticDepositAddress=DEPOSIT_ADDRESS), routes=routes):
            result = invoke("deposits", "--no-active")

        assert result.exit_code == 0, result.output
        data = output(result)
        assert data["success"] is True
        assert data["required"] == 3
        assert [(d["txid"], d["confirmations"], d["claimable"]) for d in data["deposits"]] == [
            (TXID_A, 1, False)
        ]

    def test_claim_by_txid_fetches_hex(self):
        wallet = make_wallet(claimDeposit={"id": "transfer-1"})
        with fakes(wallet, routes={f"{EXPLORER_URL}/tx/{TXID_A}/hex": TX_HEX}):
            result = invoke("claim", TXID_A, "0")

        assert result.exit_code == 0, result.output
        assert output(result) == {
            "success": True,
            "txid": TXID_A,
            "method": "claimDeposit",
            "shape": "claimDeposit(ref)",
            "tx": {"id": "transfer-1"},
            "failedAttempts": 0,
        }
        wallet.claimDeposit.assert_awaited_once_with(TX_HEX)

    def test_claim_without_claim_methods(self):
        with fakes(make_wallet(getStaticDepositAddress=DEPOSIT_ADDRESS)):
            result = invoke("claim", TXID_A)
        assert result.exit_code == 1
        data = output(result)
        assert data["success"] is False
        assert data["error"] == NO_COMPATIBLE_METHOD

    def test_claim_rejects_garbage(self):
        with fakes():
            result = invoke("claim", "not-a-txid")
        assert result.exit_code == 1
        assert output(result)["success"] is False

    def test_watch_once(self):
        routes = {
            f"{EXPLORER_URL}/address/{DEPOSIT_ADDRESS}/utxo": [
                {"txid": TXID_A, "vout": 1, "value": 50_000}
            ],
            **confirmed_routes(TXID_A, block_height=100, tip=101),
        }
        wallet = make_wallet(getStaticDepositAddress=DEPOSIT_ADDRESS, claimDeposit="ok")
        with fakes(wallet, routes=routes):
            result = invoke("watch", "--once", "--no-wait", "--label", "test")

        assert result.exit_code == 0, result.output
        assert output(result)["outcomes"] == [
            {
                "txid": TXID_A,
                "vout": 1,
                "kind": "static",
                "state": "waiting_confirmations",
                "confirmations": 2,
                "required": 3,
            }
        ]
        wallet.claimDeposit.assert_not_awaited()


class TestParseClaimTarget:
    def test_txid(self):
        ref = parse_claim_target(TXID_A.upper(), 2)
        assert ref.txid == TXID_A
        assert ref.vout == 2
        assert ref.tx_hex is None

    def test_raw_transaction(self):
        tx_hex = (
            "02000000"
            + "01" + "11" * 32 + "00000000" + "20" + "33" * 32 + "ffffffff"
            + "01" + "00e1f50500000000" + "16" + "0014" + "22" * 20
            + "00000000"
        )
        ref = parse_claim_target(tx_hex, 0)
        assert len(ref.txid) == 64
        assert ref.tx_hex == tx_hex
        assert ref.value_sats == 100_000_000

    def test_malformed_raw_transaction(self):
        with pytest.raises(ValueError):
            parse_claim_target("ab" * 150, None)


class TestSwapCommands:
    def test_balance(self):
        amm = FakeAmm(
            balance=12_345,
            token_balances={
                TOKEN_ID: {
                    "balance": "1500000",
                    "tokenInfo": {"tokenDecimals": 6, "tokenSymbol": "TKN"},
                }
            },
        )
        with fakes(amm=amm):
            result = invoke("balance")

        assert result.exit_code == 0, result.output
        assert output(result) == {
            "btc_sats": 12_345,
            "tokens": [
                {
                    "asset_id": TOKEN_HEX,
                    "ticker": "TKN",
                    "amount": 1_500_000,
                    "decimals": 6,
                    "formatted": "1.5",
                }
            ],
        }

    def test_balance_falls_back_to_wallet(self):
        amm = FakeAmm()
        amm.getBalance = AsyncMock(side_effect=RuntimeError("amm session expired"))
        wallet = make_wallet(getBalance={"balance": 777, "tokenBalances": {}})
        with fakes(wallet, amm=amm):
            result = invoke("balance")
        assert result.exit_code == 0, result.output
        assert output(result) == {"btc_sats": 777, "tokens": []}

    def test_balance_error_without_wallet_balance(self):
        amm = FakeAmm()
        amm.getBalance = AsyncMock(side_effect=RuntimeError("amm session expired"))
        with fakes(make_wallet(), amm=amm):
            result = invoke("balance")
        assert result.exit_code != 0

    def test_dry_resolve(self):
        amm = FakeAmm(pools=[pool_record(POOL_1)], outputs={POOL_1: 950})
        with fakes(amm=amm):
            result = invoke("snipe", TOKEN_ID, "--amount", "1000", "--dry-resolve")

        assert result.exit_code == 0, result.output
        assert output(result) == {
            "success": True,
            "poolId": POOL_1,
            "assetOutAddress": TOKEN_HEX,
            "curveType": "CONSTANT_PRODUCT",
        }
        assert amm.executions == []

    def test_dry_resolve_not_resolved(self):
        with fakes(amm=FakeAmm()):
            result = invoke("snipe", TOKEN_ID, "--amount", "1000", "--dry-resolve")
        assert result.exit_code == 1
        assert output(result) == {"success": False, "error": "Not resolved"}

    def test_snipe(self):
        amm = FakeAmm(pools=[pool_record(POOL_1)], outputs={POOL_1: 950})
        with fakes(amm=amm):
            result = invoke("snipe", TOKEN_ID, "-a", "1000", "--slippage", "100")

        assert result.exit_code == 0, result.output
        data = output(result)
        assert data["success"] is True
        assert data["requestId"] == "req-1"
        assert data["minAmountOut"] == "940"
        assert data["maxSlippageBps"] == 100
        assert amm.executions[0]["assetInAddress"] == BTC_ASSET_PUBKEY

    def test_snipe_pinned_dry_execute(self):
        amm = FakeAmm(pools=[pool_record(POOL_1)], outputs={POOL_1: 950})
        with fakes(amm=amm):
            result = invoke(
                "snipe", POOL_1, "-a", "1000",
                "--pool", POOL_1, "--asset-out", TOKEN_HEX,
                "--dry-execute", "--skip-balance-check",
            )

        assert result.exit_code == 0, result.output
        data = output(result)
        assert data["dryExecute"] is True
        assert amm.executions == []
        assert amm.list_calls == []

    def test_snipe_pool_requires_asset_out(self):
        with fakes(amm=FakeAmm()):
            result = invoke("snipe", TOKEN_ID, "-a", "1000", "--pool", POOL_1)
        assert result.exit_code == 1

    def test_snipe_timeout(self):
        with fakes(amm=FakeAmm(balance=0)):
            result = invoke("snipe", TOKEN_ID, "-a", "1000", "--max-duration", "0.01")
        assert result.exit_code == 1
        assert "resolving target" in output(result)["error"]

    def test_snipe_without_amm(self):
        with fakes(amm=None):
            result = invoke("snipe", TOKEN_ID, "-a", "1000")
        assert result.exit_code == 1

    def test_detect(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DETECTION__INTERVAL", "0.001")
        with fakes(amm=FakeAmm(pools=[pool_record(POOL_1)])):
            result = invoke("detect")
        assert result.exit_code == 0, result.output

    def test_detect_gives_up(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DETECTION__INTERVAL", "0.001")
        with fakes(amm=FakeAmm()):
            result = invoke("detect", "--max-duration", "0.01")
        assert result.exit_code == 1
