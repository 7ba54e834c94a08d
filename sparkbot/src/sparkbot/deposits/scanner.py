"""
Deposit discovery on watched addresses.
"""

from __future__ import annotations

from loguru import logger

from sparkbot.backends.mempool import ChainDataClient
from sparkbot.models import ConfirmedUtxo, DepositCandidate, DepositKind, Utxo, WatchedAddress
from sparkbot.settings import UnknownOutspendPolicy


def is_mature(confirmations: int, required: int) -> bool:
    """A deposit may be claimed once its confirmations reach the threshold."""
    return confirmations >= required


class DepositScanner:
    """
    Lists deposit candidates for a set of watched addresses.

    Per address the explorer's UTXO index is used first; when it reports
    nothing, unspent outputs are reconstructed from the address history.
    Scanning has no side effects: deduplication across scans belongs to
    the caller.
    """

    def __init__(
        self,
        chain: ChainDataClient,
        required_confirmations: int,
        unknown_outspend: UnknownOutspendPolicy = UnknownOutspendPolicy.EXCLUDE,
    ):
        if required_confirmations < 1:
            raise ValueError("required_confirmations must be at least 1")
        self.chain = chain
        self.required_confirmations = required_confirmations
        self.unknown_outspend = unknown_outspend

    async def unspent_outputs(self, address: str) -> list[Utxo]:
        utxos = await self.chain.list_utxos(address)
        if not utxos:
            logger.debug(f"UTXO index empty for {address[:24]}; checking txs/outspends")
            utxos = await self.chain.reconstruct_utxos(
                address,
                include_unknown=self.unknown_outspend == UnknownOutspendPolicy.INCLUDE,
            )

        unique: dict[tuple[str, int], Utxo] = {}
        for utxo in utxos:
            unique.setdefault((utxo.txid.lower(), utxo.vout), utxo)
        return list(unique.values())

    async def scan(self, watched: list[WatchedAddress]) -> list[DepositCandidate]:
        """Current deposit candidates across ``watched``, with confirmation counts."""
        candidates: list[DepositCandidate] = []
        seen_outpoints: set[tuple[str, int]] = set()
        confirmations: dict[str, int] = {}

        for entry in watched:
            for utxo in await self.unspent_outputs(entry.address):
                outpoint = (utxo.txid.lower(), utxo.vout)
                if outpoint in seen_outpoints:
                    continue
                seen_outpoints.add(outpoint)

                if utxo.txid not in confirmations:
                    confirmations[utxo.txid] = await self.chain.get_confirmations(utxo.txid)

                candidates.append(
                    DepositCandidate(
                        kind=entry.kind,
                        address=entry.address,
                        utxo=ConfirmedUtxo(
                            **utxo.model_dump(),
                            confirmations=confirmations[utxo.txid],
                            required_confirmations=self.required_confirmations,
                        ),
                    )
                )

        logger.debug(f"Scan found {len(candidates)} deposit candidate(s)")
        return candidates


def claim_order(candidates: list[DepositCandidate]) -> list[DepositCandidate]:
    """Active (single-use) deposits first, then deepest confirmations first."""
    return sorted(
        candidates,
        key=lambda c: (0 if c.kind == DepositKind.ACTIVE else 1, -c.confirmations),
    )
