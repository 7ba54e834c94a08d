"""
Wait-until-ready swap loop and the pool readiness detector.

``SwapPipeline`` repeats balance check, route resolution and execution until
one swap is submitted or its time budget runs out. Every not-ready condition
(no route yet, balance too low, zero simulation) and every failed attempt
just schedules the next cycle.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from sparkbot.collaborators import AmmAdapter, error_message
from sparkbot.encoding import is_pool_id
from sparkbot.models import RouteCandidate, SwapIntent, SwapReceipt
from sparkbot.swap.executor import NotReady, SwapError, SwapExecutor, SwapTimeoutError
from sparkbot.swap.resolver import PoolRouteResolver
from sparkbot.tasks import Deadline, format_elapsed, sleep_or_stop


@dataclass
class SwapResult:
    route: RouteCandidate
    intent: SwapIntent
    amount_out: int
    receipt: SwapReceipt | None = None
    attempts: int = 1
    elapsed: float = 0.0
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.receipt is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            **self.intent.to_request(),
            "curveType": self.route.curve_type.value if self.route.curve_type else None,
            "amountOut": str(self.amount_out),
            "attempts": self.attempts,
            "timings": {k: round(v * 1000) for k, v in self.timings.items()},
        }
        if self.receipt is None:
            data["dryExecute"] = True
        else:
            data["requestId"] = self.receipt.request_id
            data["accepted"] = self.receipt.accepted
        return data


class SwapPipeline:
    """
    Retries a swap until it is submitted or ``max_duration`` elapses.

    Args:
        amm: AMM collaborator adapter
        resolver: Route discovery
        executor: Simulation and submission
        retry_interval: Seconds between cycles
        max_duration: Wall-clock budget in seconds for the whole run
        skip_balance_check: Do not wait for the wallet to hold ``amount``
        dry_execute: Stop after building the request instead of submitting it
        stop_event: Ends the loop when set
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        amm: AmmAdapter,
        resolver: PoolRouteResolver,
        executor: SwapExecutor,
        retry_interval: float = 2.0,
        max_duration: float | None = 120.0,
        skip_balance_check: bool = False,
        dry_execute: bool = False,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.amm = amm
        self.resolver = resolver
        self.executor = executor
        self.retry_interval = retry_interval
        self.max_duration = max_duration
        self.skip_balance_check = skip_balance_check
        self.dry_execute = dry_execute
        self.stop_event = stop_event or asyncio.Event()
        self.clock = clock

    async def available_balance(self) -> int | None:
        """Spendable base-asset balance in sats, or None when the check is skipped."""
        if self.skip_balance_check:
            return None
        return (await self.amm.balance()).btc_sats

    async def attempt(
        self, target: str, amount_in: int, pinned: RouteCandidate | None = None
    ) -> SwapResult | NotReady:
        """One cycle: authenticate, check funds, resolve, simulate, submit."""
        timings: dict[str, float] = {}

        started = self.clock()
        await self.amm.initialize()
        timings["auth"] = self.clock() - started

        started = self.clock()
        balance = await self.available_balance()
        timings["balance"] = self.clock() - started

        route = pinned
        if route is None:
            started = self.clock()
            route = await self.resolver.resolve(target, amount_in)
            timings["resolve"] = self.clock() - started
        if route is None:
            return NotReady("resolving target")
        if balance is not None and balance < amount_in:
            return NotReady(f"funding needed (balance {balance} < amount {amount_in})")

        logger.info(
            f"Target ready. pool={route.pool_id[:12]} "
            f"curve={route.curve_type.value if route.curve_type else 'unknown'} "
            f"balance={'NA' if balance is None else balance}"
        )

        started = self.clock()
        plan = await self.executor.prepare(route, amount_in, reroutable=is_pool_id(target))
        timings["simulate"] = self.clock() - started
        if isinstance(plan, NotReady):
            return plan

        result = SwapResult(
            route=plan.route, intent=plan.intent, amount_out=plan.amount_out, timings=timings
        )
        if self.dry_execute:
            logger.info("Dry execute: swap request built, not submitted")
            return result

        started = self.clock()
        result.receipt = await self.executor.execute(plan)
        timings["execute"] = self.clock() - started
        return result

    async def run(
        self, target: str, amount_in: int, pinned: RouteCandidate | None = None
    ) -> SwapResult:
        """
        Loop until a swap is submitted (or built, when dry-executing).

        Raises:
            SwapTimeoutError: ``max_duration`` elapsed first; carries the last error
            SwapError: the loop was stopped
        """
        if amount_in <= 0:
            raise ValueError("amount_in must be positive")

        deadline = Deadline(self.max_duration, self.clock)
        attempts = 0
        last_error = ""
        while True:
            attempts += 1
            backoff = self.retry_interval
            try:
                outcome = await self.attempt(target, amount_in, pinned)
            except Exception as e:
                last_error = error_message(e)
                badge = "AUTH 403" if "403" in last_error else "retrying"
                logger.warning(
                    f"Swap attempt {attempts} failed ({badge}, "
                    f"elapsed {format_elapsed(deadline.elapsed())}): {last_error}"
                )
            else:
                if isinstance(outcome, SwapResult):
                    outcome.attempts = attempts
                    outcome.elapsed = deadline.elapsed()
                    return outcome
                last_error = outcome.reason
                if outcome.backoff is not None:
                    backoff = outcome.backoff
                logger.info(
                    f"Waiting for target • {outcome.reason} "
                    f"(elapsed {format_elapsed(deadline.elapsed())})"
                )

            if deadline.expired() or await sleep_or_stop(backoff, self.stop_event, deadline):
                if self.stop_event.is_set():
                    raise SwapError(f"Stopped after {attempts} attempt(s): {last_error}")
                raise SwapTimeoutError(
                    f"Timeout after {round(deadline.elapsed())}s: {last_error}", last_error
                )


class ReadinessDetector:
    """
    Reports when the AMM is live: ``consecutive_successes`` pool listings in a
    row that return at least one pool. Any failure or empty listing resets
    the streak.
    """

    def __init__(
        self,
        amm: AmmAdapter,
        interval: float = 2.0,
        consecutive_successes: int = 3,
        probe_limit: int = 5,
        max_duration: float | None = None,
        stop_event: asyncio.Event | None = None,
    ):
        if consecutive_successes < 1:
            raise ValueError("consecutive_successes must be at least 1")
        self.amm = amm
        self.interval = interval
        self.consecutive_successes = consecutive_successes
        self.probe_limit = probe_limit
        self.max_duration = max_duration
        self.stop_event = stop_event or asyncio.Event()
        self.streak = 0

    async def probe(self) -> int:
        """Authenticate and count listed pools; raises on failure."""
        await self.amm.initialize()
        return len(await self.amm.list_pools(limit=self.probe_limit))

    async def run(self) -> bool:
        """
        Poll until ready.

        Returns:
            True once the streak is reached, False if stopped or out of time.
        """
        deadline = Deadline(self.max_duration)
        while True:
            try:
                count = await self.probe()
            except Exception as e:
                self.streak = 0
                logger.warning(f"ERR {error_message(e)} consecutive=0")
            else:
                if count > 0:
                    self.streak += 1
                    logger.info(
                        f"OK pools={count} consecutive={self.streak}/{self.consecutive_successes}"
                    )
                else:
                    self.streak = 0
                    logger.warning("WARN pools=0 msg=Empty consecutive=0")

            if self.streak >= self.consecutive_successes:
                logger.success(f"Readiness reached ({self.streak} consecutive)")
                return True
            if await sleep_or_stop(self.interval, self.stop_event, deadline):
                return False
