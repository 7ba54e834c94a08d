"""
Deposit watch loop: scan, wait for maturity, claim.

Each scan walks the watched addresses, and every transaction not yet in the
seen store goes through

    WAITING_CONFIRMATIONS -> MATURE -> CLAIMING -> CLAIMED | CLAIM_FAILED

A transaction is marked seen when it is first taken up, so a failed claim is
not retried by the same watcher. With ``block_on_pending=False`` an immature
deposit is only reported and left unseen, and a later scan claims it once it
has matured.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from sparkbot.backends.mempool import ChainDataClient
from sparkbot.collaborators import WalletAdapter
from sparkbot.deduplication import SeenStore, SeenTxids
from sparkbot.deposits.claim import (
    ClaimAttemptFailure,
    ClaimError,
    ClaimExecutor,
    DepositReference,
)
from sparkbot.deposits.scanner import DepositScanner, claim_order, is_mature
from sparkbot.models import DepositCandidate
from sparkbot.tasks import Deadline, run_periodic_task, sleep_or_stop


class DepositState(str, Enum):
    SCANNING = "scanning"
    WAITING_CONFIRMATIONS = "waiting_confirmations"
    MATURE = "mature"
    CLAIMING = "claiming"
    CLAIMED = "claimed"
    CLAIM_FAILED = "claim_failed"


ProgressCallback = Callable[[DepositCandidate, int, int], None]


@dataclass
class ClaimOutcome:
    """Where one deposit ended up after a pass of the pipeline."""

    candidate: DepositCandidate
    state: DepositState
    confirmations: int = 0
    method: str | None = None
    result: Any = None
    error: str | None = None
    attempts: list[ClaimAttemptFailure] = field(default_factory=list)

    @property
    def claimed(self) -> bool:
        return self.state == DepositState.CLAIMED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "txid": self.candidate.txid,
            "vout": self.candidate.vout,
            "kind": self.candidate.kind.value,
            "state": self.state.value,
            "confirmations": self.confirmations,
            "required": self.candidate.required_confirmations,
        }
        if self.method:
            data["method"] = self.method
        if self.error:
            data["error"] = self.error
        if self.attempts:
            data["attempts"] = [
                {"method": a.method, "shape": a.shape, "error": a.message} for a in self.attempts
            ]
        return data


class DepositClaimPipeline:
    """
    Watches the wallet's deposit addresses and claims matured deposits.

    Args:
        wallet: Wallet collaborator adapter (watched addresses)
        scanner: Candidate discovery
        executor: Claim strategy runner
        seen: Deduplication store; a fresh in-memory one per pipeline by default
        poll_interval: Seconds between scans in ``run``
        confirmation_poll_interval: Seconds between confirmation checks while waiting
        include_active: Also watch unused single-use deposit addresses
        block_on_pending: Wait in place for an immature deposit instead of
            deferring it to a later scan
        stop_event: Interrupts every wait when set
        max_wait: Optional cap in seconds on a single confirmation wait
        label: Prefix for log lines, to tell several watchers apart
        on_progress: Called as ``(candidate, confirmations, poll)`` on every
            confirmation check that did not reach maturity
    """

    def __init__(
        self,
        wallet: WalletAdapter,
        scanner: DepositScanner,
        executor: ClaimExecutor,
        seen: SeenStore | None = None,
        poll_interval: float = 5.0,
        confirmation_poll_interval: float = 10.0,
        include_active: bool = False,
        block_on_pending: bool = True,
        stop_event: asyncio.Event | None = None,
        max_wait: float | None = None,
        label: str = "",
        on_progress: ProgressCallback | None = None,
    ):
        self.wallet = wallet
        self.scanner = scanner
        self.executor = executor
        self.seen: SeenStore = seen if seen is not None else SeenTxids()
        self.poll_interval = poll_interval
        self.confirmation_poll_interval = confirmation_poll_interval
        self.include_active = include_active
        self.block_on_pending = block_on_pending
        self.stop_event = stop_event or asyncio.Event()
        self.max_wait = max_wait
        self.on_progress = on_progress
        self._prefix = f"[{label}] " if label else ""

    @property
    def chain(self) -> ChainDataClient:
        return self.scanner.chain

    @property
    def required_confirmations(self) -> int:
        return self.scanner.required_confirmations

    def stop(self) -> None:
        self.stop_event.set()

    async def candidates(self) -> list[DepositCandidate]:
        """Current candidates on every watched address, in claim order."""
        watched = await self.wallet.watched_addresses(self.include_active)
        if not watched:
            logger.warning(f"{self._prefix}Wallet reports no deposit addresses to watch")
            return []
        return claim_order(await self.scanner.scan(watched))

    async def report(self) -> list[dict[str, Any]]:
        """Status rows for every candidate, without claiming anything."""
        return [c.to_status() for c in await self.candidates()]

    async def scan_once(self) -> list[ClaimOutcome]:
        """One scan over all watched addresses, claiming what is new and mature."""
        outcomes: list[ClaimOutcome] = []
        for candidate in await self.candidates():
            if self.stop_event.is_set():
                break
            if candidate.txid in self.seen:
                continue

            if not candidate.mature and not self.block_on_pending:
                logger.info(
                    f"{self._prefix}Deposit {candidate.txid}:{candidate.vout} pending "
                    f"({candidate.confirmations}/{candidate.required_confirmations} confirmations)"
                )
                outcomes.append(
                    ClaimOutcome(
                        candidate,
                        DepositState.WAITING_CONFIRMATIONS,
                        confirmations=candidate.confirmations,
                    )
                )
                continue

            self.seen.mark_seen(candidate.txid)
            logger.info(
                f"{self._prefix}New deposit {candidate.txid}:{candidate.vout} "
                f"({candidate.utxo.value_sats} sats, {candidate.kind.value})"
            )
            outcomes.append(await self.process(candidate))
        return outcomes

    async def wait_for_confirmations(self, candidate: DepositCandidate) -> int | None:
        """
        Poll until ``candidate`` reaches the confirmation threshold.

        Returns:
            The confirmation count once mature, or None if the wait was
            stopped or ran out of time.
        """
        deadline = Deadline(self.max_wait)
        confirmations = candidate.confirmations
        polls = 0
        while not is_mature(confirmations, self.required_confirmations):
            polls += 1
            logger.info(
                f"{self._prefix}Waiting for {candidate.txid[:16]}... "
                f"{confirmations}/{self.required_confirmations} confirmations (check #{polls})"
            )
            if self.on_progress is not None:
                self.on_progress(candidate, confirmations, polls)
            if await sleep_or_stop(self.confirmation_poll_interval, self.stop_event, deadline):
                return None
            confirmations = await self.chain.get_confirmations(candidate.txid)
        return confirmations

    async def process(self, candidate: DepositCandidate) -> ClaimOutcome:
        """Drive one candidate from its current confirmations to a claim result."""
        confirmations = candidate.confirmations
        if not candidate.mature:
            waited = await self.wait_for_confirmations(candidate)
            if waited is None:
                logger.info(f"{self._prefix}Stopped waiting for {candidate.txid}")
                return ClaimOutcome(
                    candidate, DepositState.WAITING_CONFIRMATIONS, confirmations=confirmations
                )
            confirmations = waited

        logger.info(
            f"{self._prefix}Deposit {candidate.txid} mature with {confirmations} confirmations"
        )
        tx_hex = await self.chain.get_tx_hex(candidate.txid)
        if tx_hex is None:
            logger.warning(
                f"{self._prefix}Raw hex unavailable for {candidate.txid}; claiming by txid"
            )

        ref = DepositReference(
            txid=candidate.txid,
            vout=candidate.vout,
            tx_hex=tx_hex,
            kind=candidate.kind,
            value_sats=candidate.utxo.value_sats,
        )
        try:
            result = await self.executor.claim(ref)
        except ClaimError as e:
            logger.error(f"{self._prefix}Claim failed for {candidate.txid}: {e}")
            return ClaimOutcome(
                candidate,
                DepositState.CLAIM_FAILED,
                confirmations=confirmations,
                error=str(e),
                attempts=e.attempts,
            )

        logger.info(f"{self._prefix}Claimed {candidate.txid} via {result.shape}")
        return ClaimOutcome(
            candidate,
            DepositState.CLAIMED,
            confirmations=confirmations,
            method=result.method,
            result=result.result,
            attempts=result.failures,
        )

    async def _tick(self) -> None:
        await self.scan_once()

    async def run(self, max_runs: int | None = None) -> None:
        """Scan every ``poll_interval`` seconds until stopped."""
        logger.info(
            f"{self._prefix}Watching deposits (min {self.required_confirmations} confirmations, "
            f"every {self.poll_interval}s)"
        )
        await run_periodic_task(
            f"{self._prefix}deposit watcher".strip(),
            self._tick,
            self.poll_interval,
            stop_event=self.stop_event,
            max_runs=max_runs,
        )
