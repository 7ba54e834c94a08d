"""
Mempool.space / Esplora style block explorer client.

Works against the public mempool.space instances, a self-hosted mempool,
or a private electrs endpoint. Endpoints are tried in order; the first
structurally valid answer wins. Transport and parse failures never
propagate: callers get an "unavailable" value (empty list, 0 or None) and
are expected to try again later.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import ValidationError

from sparkbot.models import Utxo

T = TypeVar("T")

HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")
# Shorter bodies are error pages or truncated responses, not transactions
MIN_TX_HEX_LENGTH = 100

RAW_TX_PATHS = (
    "/tx/{txid}/hex",
    "/tx/{txid}/raw",
    "/rawtx/{txid}",
    "/raw/tx/{txid}",
)


@dataclass
class ExplorerEndpoint:
    """One explorer API base URL with optional credentials."""

    base_url: str
    auth: httpx.Auth | None = None

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"


def _finite(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def compute_confirmations(confirmed: bool, block_height: Any, tip_height: Any) -> int:
    """
    Confirmation depth of a transaction.

    ``tip - block_height + 1`` when confirmed and both heights are finite
    positive numbers, clamped at zero; otherwise zero.
    """
    if not confirmed:
        return 0
    height = _finite(block_height)
    tip = _finite(tip_height)
    if height is None or tip is None or height <= 0 or tip <= 0:
        return 0
    return max(0, int(tip) - int(height) + 1)


def is_plausible_tx_hex(text: str | None) -> bool:
    if not text:
        return False
    return bool(HEX_PATTERN.match(text)) and len(text) > MIN_TX_HEX_LENGTH


def parse_utxo_list(data: Any) -> list[Utxo] | None:
    """
    Parse an ``/address/{addr}/utxo`` body.

    Returns None when the body is not an array. Malformed elements are dropped.
    """
    if not isinstance(data, list):
        return None

    utxos: list[Utxo] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            utxos.append(
                Utxo(
                    txid=str(item.get("txid") or ""),
                    vout=int(item.get("vout", -1)),
                    value_sats=int(item.get("value") or 0),
                )
            )
        except (TypeError, ValueError, ValidationError):
            logger.debug(f"Dropping malformed UTXO entry: {item!r}")
    return utxos


def output_address(output: dict[str, Any]) -> str | None:
    """Address paid by a transaction output, across explorer dialects."""
    script_pubkey = output.get("scriptPubKey")
    nested = script_pubkey.get("address") if isinstance(script_pubkey, dict) else None
    return output.get("scriptpubkey_address") or output.get("address") or nested


class ChainDataClient:
    """
    Block explorer client with ordered endpoint failover.

    Each public method returns the first valid answer across the configured
    endpoints, or an unavailable value when none could answer.
    """

    def __init__(
        self,
        endpoints: list[ExplorerEndpoint],
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not endpoints:
            raise ValueError("At least one explorer endpoint is required")
        self.endpoints = endpoints
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> ChainDataClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _get(self, endpoint: ExplorerEndpoint, path: str, accept: str) -> httpx.Response:
        response = await self.client.get(
            endpoint.url(path),
            headers={"accept": accept},
            auth=endpoint.auth if endpoint.auth is not None else httpx.USE_CLIENT_DEFAULT,
        )
        response.raise_for_status()
        return response

    async def _first_json(self, path: str, parse: Callable[[Any], T | None]) -> T | None:
        for endpoint in self.endpoints:
            try:
                response = await self._get(endpoint, path, "application/json")
                result = parse(response.json())
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"{endpoint.base_url}{path} failed: {e}")
                continue
            if result is None:
                logger.debug(f"{endpoint.base_url}{path} returned an unexpected shape")
                continue
            return result
        return None

    async def list_utxos(self, address: str) -> list[Utxo]:
        """UTXOs for an address from the explorer's UTXO index; empty if unavailable."""
        utxos = await self._first_json(f"/address/{address}/utxo", parse_utxo_list)
        if utxos is None:
            logger.warning(f"No explorer could list UTXOs for {address}")
            return []
        logger.debug(f"Found {len(utxos)} UTXOs for address {address}")
        return utxos

    async def list_address_txs(self, address: str) -> list[dict[str, Any]]:
        """Transaction history for an address; empty if unavailable."""

        def parse(data: Any) -> list[dict[str, Any]] | None:
            if not isinstance(data, list):
                return None
            return [tx for tx in data if isinstance(tx, dict)]

        txs = await self._first_json(f"/address/{address}/txs", parse)
        return txs if txs is not None else []

    async def get_outspends(self, txid: str) -> list[dict[str, Any]] | None:
        """
        Spent status of every output of ``txid``, aligned by output index.

        None means the explorers could not answer, which is distinct from
        "all outputs unspent".
        """

        def parse(data: Any) -> list[dict[str, Any]] | None:
            if not isinstance(data, list):
                return None
            return [entry if isinstance(entry, dict) else {} for entry in data]

        return await self._first_json(f"/tx/{txid}/outspends", parse)

    async def get_tip_height(self) -> int | None:
        for endpoint in self.endpoints:
            height = await self._tip_height_from(endpoint)
            if height is not None:
                return height
        return None

    async def _tip_height_from(self, endpoint: ExplorerEndpoint) -> int | None:
        try:
            response = await self._get(endpoint, "/blocks/tip/height", "text/plain")
            return int(response.text.strip())
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Tip height from {endpoint.base_url} failed: {e}")
            return None

    async def get_confirmations(self, txid: str) -> int:
        """
        Confirmation count for ``txid``; 0 when unconfirmed or unavailable.

        Status and tip height are taken from the same endpoint so both
        heights come from one view of the chain.
        """
        for endpoint in self.endpoints:
            try:
                response = await self._get(endpoint, f"/tx/{txid}/status", "application/json")
                status = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"Status of {txid} from {endpoint.base_url} failed: {e}")
                continue
            if not isinstance(status, dict):
                continue

            tip = await self._tip_height_from(endpoint)
            if tip is None:
                continue

            return compute_confirmations(
                bool(status.get("confirmed")), status.get("block_height"), tip
            )
        return 0

    async def get_tx_hex(self, txid: str) -> str | None:
        """Raw transaction hex, or None if no endpoint returned plausible hex."""
        for endpoint in self.endpoints:
            for template in RAW_TX_PATHS:
                path = template.format(txid=txid)
                try:
                    response = await self._get(endpoint, path, "text/plain")
                except httpx.HTTPError as e:
                    logger.debug(f"{endpoint.base_url}{path} failed: {e}")
                    continue
                text = response.text.strip()
                if is_plausible_tx_hex(text):
                    return text

            try:
                response = await self._get(endpoint, f"/tx/{txid}", "application/json")
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"{endpoint.base_url}/tx/{txid} failed: {e}")
                continue
            if isinstance(data, dict):
                embedded = data.get("hex") or data.get("raw") or data.get("txHex")
                if isinstance(embedded, str) and is_plausible_tx_hex(embedded.strip()):
                    return embedded.strip()

        logger.warning(f"Could not fetch raw hex for {txid}")
        return None

    async def reconstruct_utxos(self, address: str, include_unknown: bool = False) -> list[Utxo]:
        """
        Rebuild the unspent outputs paying ``address`` from its transaction history.

        Used when the UTXO index returns nothing. An output counts as unspent
        only when the outspend endpoint reports ``spent: false``. When spent
        status is unknown the output is excluded unless ``include_unknown``.
        """
        utxos: list[Utxo] = []
        for tx in await self.list_address_txs(address):
            txid = str(tx.get("txid") or tx.get("hash") or "")
            if not txid:
                continue

            outputs = tx.get("vout")
            if not isinstance(outputs, list):
                outputs = tx.get("outputs")
            if not isinstance(outputs, list):
                continue

            paying = [
                (index, out)
                for index, out in enumerate(outputs)
                if isinstance(out, dict) and output_address(out) == address
            ]
            if not paying:
                continue

            outspends = await self.get_outspends(txid)
            for index, out in paying:
                if outspends is None:
                    logger.warning(
                        f"Spent status of {txid}:{index} unknown; "
                        f"{'including' if include_unknown else 'excluding'} it"
                    )
                    spent = not include_unknown
                elif index < len(outspends):
                    spent = outspends[index].get("spent") is not False
                else:
                    spent = True
                if spent:
                    continue

                try:
                    utxos.append(
                        Utxo(
                            txid=txid,
                            vout=index,
                            value_sats=int(out.get("value") or out.get("sats") or 0),
                        )
                    )
                except (TypeError, ValueError, ValidationError):
                    logger.debug(f"Dropping malformed output {txid}:{index}")
        return utxos
