"""
Tests for pool route resolution.
"""

from __future__ import annotations

import asyncio

import pytest

from sparkbot.collaborators import AmmAdapter
from sparkbot.models import CurveType
from sparkbot.settings import BTC_ASSET_PUBKEY
from sparkbot.swap.resolver import PoolRouteResolver
from _sparkbot_test_helpers import TOKEN_B_HEX, TOKEN_HEX, TOKEN_ID, FakeAmm, pool_record

POOL_1 = "02" + "01" * 32
POOL_2 = "02" + "02" * 32
POOL_3 = "03" + "03" * 32


def _resolver(amm: FakeAmm, **kwargs) -> PoolRouteResolver:
    return PoolRouteResolver(AmmAdapter(amm), **kwargs)


class TestTokenTargets:
    @pytest.mark.asyncio
    async def test_largest_simulated_output_wins(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_1), pool_record(POOL_2)],
            outputs={POOL_1: 900, POOL_2: 950},
        )
        route = await _resolver(amm).resolve(TOKEN_ID, 1_000)

        assert route is not None
        assert route.pool_id == POOL_2
        assert route.asset_out_address == TOKEN_HEX
        assert route.curve_type == CurveType.CONSTANT_PRODUCT

    @pytest.mark.asyncio
    async def test_tie_keeps_first_listed_pool(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_2), pool_record(POOL_1)],
            outputs={POOL_1: 950, POOL_2: 950},
        )
        route = await _resolver(amm).resolve(TOKEN_ID, 1_000)
        assert route is not None
        assert route.pool_id == POOL_2

    @pytest.mark.asyncio
    async def test_each_pool_simulated_once(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_1), pool_record(POOL_2)],
            outputs={POOL_1: 1, POOL_2: 2},
        )
        await _resolver(amm).resolve(TOKEN_ID, 1_000)
        assert sorted(s["poolId"] for s in amm.simulations) == [POOL_1, POOL_2]
        assert amm.simulations[0]["assetInAddress"] == BTC_ASSET_PUBKEY
        assert amm.simulations[0]["amountIn"] == "1000"

    @pytest.mark.asyncio
    async def test_queries_every_lookup_key_on_both_sides(self):
        amm = FakeAmm()
        await _resolver(amm, query_limit=20).resolve(TOKEN_ID, 1_000)
        assert amm.list_calls == [
            {"limit": 20, "assetAAddress": TOKEN_HEX},
            {"limit": 20, "assetBAddress": TOKEN_HEX},
            {"limit": 20, "assetAAddress": TOKEN_HEX.upper()},
            {"limit": 20, "assetBAddress": TOKEN_HEX.upper()},
            {"limit": 20, "assetAAddress": TOKEN_ID},
            {"limit": 20, "assetBAddress": TOKEN_ID},
        ]

    @pytest.mark.asyncio
    async def test_pools_without_base_asset_are_ignored(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_3, asset_a=TOKEN_B_HEX), pool_record(POOL_1)],
            outputs={POOL_3: 10_000, POOL_1: 500},
        )
        route = await _resolver(amm).resolve(TOKEN_ID, 1_000)
        assert route is not None
        assert route.pool_id == POOL_1
        assert [s["poolId"] for s in amm.simulations] == [POOL_1]

    @pytest.mark.asyncio
    async def test_base_asset_on_side_b(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_1, asset_a=TOKEN_HEX, asset_b=BTC_ASSET_PUBKEY)],
            outputs={POOL_1: 10},
        )
        route = await _resolver(amm).resolve(TOKEN_ID, 1_000)
        assert route is not None
        assert route.asset_out_address == TOKEN_HEX

    @pytest.mark.asyncio
    async def test_failed_simulations_are_skipped(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_1), pool_record(POOL_2)],
            outputs={POOL_1: RuntimeError("pool paused"), POOL_2: 800},
        )
        route = await _resolver(amm).resolve(TOKEN_ID, 1_000)
        assert route is not None
        assert route.pool_id == POOL_2

    @pytest.mark.asyncio
    async def test_not_ready_when_nothing_is_listed(self):
        assert await _resolver(FakeAmm()).resolve(TOKEN_ID, 1_000) is None

    @pytest.mark.asyncio
    async def test_not_ready_when_listing_fails(self):
        amm = FakeAmm(pools=[pool_record(POOL_1)], outputs={POOL_1: 10})
        amm.list_error = ConnectionError("gateway down")
        assert await _resolver(amm).resolve(TOKEN_ID, 1_000) is None

    @pytest.mark.asyncio
    async def test_not_ready_when_every_simulation_fails(self):
        amm = FakeAmm(pools=[pool_record(POOL_1)], outputs={POOL_1: RuntimeError("x")})
        assert await _resolver(amm).resolve(TOKEN_ID, 1_000) is None


class TestPoolTargets:
    @pytest.mark.asyncio
    async def test_literal_pool_id(self):
        amm = FakeAmm(pools=[pool_record(POOL_1, curve_type="V2_SINGLE_SIDED")])
        route = await _resolver(amm).resolve(POOL_1, 1_000)
        assert route is not None
        assert route.pool_id == POOL_1
        assert route.curve_type == CurveType.SINGLE_SIDED
        assert amm.list_calls == []

    @pytest.mark.asyncio
    async def test_unknown_pool_is_not_ready(self):
        assert await _resolver(FakeAmm()).resolve(POOL_1, 1_000) is None

    @pytest.mark.asyncio
    async def test_pool_without_base_asset(self):
        amm = FakeAmm(pools=[pool_record(POOL_3, asset_a=TOKEN_B_HEX)])
        assert await _resolver(amm).resolve(POOL_3, 1_000) is None

    @pytest.mark.asyncio
    async def test_unrecognised_target(self):
        assert await _resolver(FakeAmm()).resolve("not-a-target", 1_000) is None

    @pytest.mark.asyncio
    async def test_resolve_from_pool_searches_the_same_token(self):
        amm = FakeAmm(
            pools=[pool_record(POOL_1), pool_record(POOL_2)],
            outputs={POOL_1: 0, POOL_2: 700},
        )
        route = await _resolver(amm).resolve_from_pool(POOL_1, 1_000)
        assert route is not None
        assert route.pool_id == POOL_2


class ConcurrencyTrackingAmm(FakeAmm):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active = 0
        self.peak = 0

    async def simulateSwap(self, request):  # noqa: N802
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return await super().simulateSwap(request)


class TestFanout:
    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        pool_ids = [f"02{i:02x}" + "00" * 31 for i in range(6)]
        amm = ConcurrencyTrackingAmm(
            pools=[pool_record(p) for p in pool_ids],
            outputs={p: i + 1 for i, p in enumerate(pool_ids)},
        )
        route = await _resolver(amm, fanout=2).resolve(TOKEN_ID, 1_000)
        assert route is not None
        assert route.pool_id == pool_ids[-1]
        assert amm.peak == 2

    def test_fanout_must_be_positive(self):
        with pytest.raises(ValueError):
            _resolver(FakeAmm(), fanout=0)
