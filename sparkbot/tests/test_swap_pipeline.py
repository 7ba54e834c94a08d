"""
Tests for the wait-until-ready swap loop and the readiness detector.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from sparkbot.collaborators import AmmAdapter
from sparkbot.models import RouteCandidate
from sparkbot.swap import (
    ReadinessDetector,
    SwapError,
    SwapExecutor,
    SwapPipeline,
    SwapTimeoutError,
)
from sparkbot.swap.resolver import PoolRouteResolver
from _sparkbot_test_helpers import TOKEN_HEX, TOKEN_ID, FakeAmm, pool_record

POOL_1 = "02" + "01" * 32


def _pipeline(amm: FakeAmm, **kwargs: Any) -> SwapPipeline:
    adapter = AmmAdapter(amm)
    resolver = PoolRouteResolver(adapter)
    kwargs.setdefault("retry_interval", 0)
    return SwapPipeline(adapter, resolver, SwapExecutor(adapter, resolver), **kwargs)


def _ready_amm(**kwargs: Any) -> FakeAmm:
    return FakeAmm(pools=[pool_record(POOL_1)], outputs={POOL_1: 950}, **kwargs)


class FundedLaterAmm(FakeAmm):
    """Reports an empty wallet until the balance has been read ``empty_reads`` times."""

    def __init__(self, empty_reads: int, **kwargs: Any):
        super().__init__(**kwargs)
        self.empty_reads = empty_reads
        self.balance_reads = 0

    async def getBalance(self) -> dict[str, Any]:  # noqa: N802
        self.balance_reads += 1
        if self.balance_reads <= self.empty_reads:
            return {"balance": 0}
        return await super().getBalance()


class FlakyAuthAmm(FakeAmm):
    def __init__(self, failures: int, **kwargs: Any):
        super().__init__(**kwargs)
        self.failures = failures

    async def initialize(self) -> None:
        await super().initialize()
        if self.initialized <= self.failures:
            raise RuntimeError("Request failed with status 403")


class TestSwapPipeline:
    @pytest.mark.asyncio
    async def test_token_target_swaps(self):
        amm = _ready_amm()
        result = await _pipeline(amm).run(TOKEN_ID, 1_000)

        assert not result.dry_run
        assert result.attempts == 1
        assert result.route.pool_id == POOL_1
        data = result.to_dict()
        assert data["requestId"] == "req-1"
        assert data["accepted"] is True
        assert data["amountOut"] == "950"
        assert data["minAmountOut"] == "921"
        assert data["curveType"] == "CONSTANT_PRODUCT"
        assert set(data["timings"]) == {"auth", "balance", "resolve", "simulate", "execute"}

    @pytest.mark.asyncio
    async def test_waits_for_funding(self):
        amm = FundedLaterAmm(empty_reads=2, pools=[pool_record(POOL_1)], outputs={POOL_1: 950})
        result = await _pipeline(amm).run(TOKEN_ID, 1_000)

        assert result.attempts == 3
        assert len(amm.executions) == 1

    @pytest.mark.asyncio
    async def test_skip_balance_check(self):
        amm = _ready_amm(balance=0)
        result = await _pipeline(amm, skip_balance_check=True).run(TOKEN_ID, 1_000)
        assert result.attempts == 1
        assert "balance" in result.timings

    @pytest.mark.asyncio
    async def test_pinned_route_skips_resolution(self):
        amm = _ready_amm()
        pinned = RouteCandidate(pool_id=POOL_1, asset_out_address=TOKEN_HEX)
        result = await _pipeline(amm).run(TOKEN_ID, 1_000, pinned)

        assert result.route == pinned
        assert amm.list_calls == []
        assert "resolve" not in result.timings

    @pytest.mark.asyncio
    async def test_dry_execute_builds_but_does_not_submit(self):
        amm = _ready_amm()
        result = await _pipeline(amm, dry_execute=True).run(POOL_1, 1_000)

        assert result.dry_run
        assert amm.executions == []
        assert result.to_dict()["dryExecute"] is True

    @pytest.mark.asyncio
    async def test_failed_attempts_are_retried(self):
        amm = FlakyAuthAmm(failures=2, pools=[pool_record(POOL_1)], outputs={POOL_1: 950})
        result = await _pipeline(amm).run(TOKEN_ID, 1_000)
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_timeout_carries_last_reason(self):
        with pytest.raises(SwapTimeoutError) as exc:
            await _pipeline(FakeAmm(), retry_interval=0.01, max_duration=0.05).run(
                TOKEN_ID, 1_000
            )
        assert exc.value.last_error == "resolving target"
        assert "Timeout" in str(exc.value)

    @pytest.mark.asyncio
    async def test_timeout_while_unfunded(self):
        amm = _ready_amm(balance=10)
        with pytest.raises(SwapTimeoutError) as exc:
            await _pipeline(amm, retry_interval=0.01, max_duration=0.05).run(TOKEN_ID, 1_000)
        assert exc.value.last_error == "funding needed (balance 10 < amount 1000)"
        assert amm.executions == []

    @pytest.mark.asyncio
    async def test_stop_event(self):
        stop = asyncio.Event()
        stop.set()
        with pytest.raises(SwapError) as exc:
            await _pipeline(FakeAmm(), stop_event=stop).run(TOKEN_ID, 1_000)
        assert not isinstance(exc.value, SwapTimeoutError)

    @pytest.mark.asyncio
    async def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            await _pipeline(_ready_amm()).run(TOKEN_ID, 0)


class SequencedAmm(FakeAmm):
    """``listPools`` answers from ``responses`` in order, repeating the last one."""

    def __init__(self, responses: list[Any]):
        super().__init__()
        self.responses = responses

    async def listPools(self, filters: dict[str, Any]) -> dict[str, Any]:  # noqa: N802
        self.list_calls.append(filters)
        response = self.responses[min(len(self.list_calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return {"pools": response}


class TestReadinessDetector:
    @pytest.mark.asyncio
    async def test_ready_after_consecutive_listings(self):
        amm = SequencedAmm([[pool_record(POOL_1)]])
        detector = ReadinessDetector(AmmAdapter(amm), interval=0, consecutive_successes=3)

        assert await detector.run()
        assert detector.streak == 3
        assert amm.initialized == 3
        assert amm.list_calls == [{"limit": 5}] * 3

    @pytest.mark.asyncio
    async def test_empty_or_failed_listing_resets_streak(self):
        pools = [pool_record(POOL_1)]
        amm = SequencedAmm([pools, pools, [], pools, RuntimeError("502"), pools, pools, pools])
        detector = ReadinessDetector(AmmAdapter(amm), interval=0, consecutive_successes=3)

        assert await detector.run()
        assert len(amm.list_calls) == 8

    @pytest.mark.asyncio
    async def test_gives_up_after_max_duration(self):
        detector = ReadinessDetector(
            AmmAdapter(SequencedAmm([[]])), interval=0.01, max_duration=0.05
        )
        assert not await detector.run()
        assert detector.streak == 0

    def test_consecutive_successes_must_be_positive(self):
        with pytest.raises(ValueError):
            ReadinessDetector(AmmAdapter(FakeAmm()), consecutive_successes=0)
