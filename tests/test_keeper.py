"""
Tests for protocol deployment and the keeper runner.
"""

import pytest

from aethercycle_core.config import AetherCycleConfig
from aethercycle_core.precision import SECONDS_PER_DAY, aec
from aethercycle_core.protocol import build_protocol
from run_keeper import Keeper, simulate_trade


class TestBuildProtocol:

    def test_endowment_sealed(self, protocol):
        assert protocol.endowment.sealed
        assert protocol.endowment.reserve == aec(311_111_111)

    def test_pools_funded_and_started(self, protocol):
        for pool in protocol.pools.values():
            assert pool.base_initialized
            assert pool.reward_token.balance_of(pool.address) == pool.base_allocation

    def test_market_seeded(self, protocol):
        pair = protocol.market.get_pair(protocol.aec.address, protocol.stable.address)
        assert pair.reserve0 > 0 and pair.reserve1 > 0
        assert protocol.lp_token.balance_of("genesis-lp") > 0

    def test_engine_wired(self, protocol):
        engine = protocol.engine
        assert engine.token_pool is protocol.token_pool
        assert engine.nft_pool is protocol.nft_pool
        assert engine.address in protocol.aec.tax_exempt
        assert protocol.aec.engine == engine.address

    def test_pool_lookup(self, protocol):
        assert protocol.pool("nft") is protocol.nft_pool
        with pytest.raises(KeyError):
            protocol.pool("vault")

    def test_compounding_off(self, clock):
        cfg = AetherCycleConfig()
        cfg.endowment.compounding = False
        protocol = build_protocol(cfg, clock)
        assert not protocol.endowment.compounding_enabled

    def test_recent_events_ordered(self, taxed_protocol, clock):
        taxed_protocol.engine.run_cycle("alice")
        events = taxed_protocol.recent_events(20)
        assert 0 < len(events) <= 20
        stamps = [e["timestamp"] for e in events]
        assert stamps == sorted(stamps)
        assert taxed_protocol.recent_events(0) == []

    def test_status(self, protocol):
        status = protocol.status()
        assert status["aec"]["symbol"] == "AEC"
        assert len(status["market"]) == 1


class TestKeeper:

    def test_invalid_interval(self, protocol):
        with pytest.raises(ValueError):
            Keeper(protocol, "keeper", 0)

    def test_simulate_trade_generates_tax(self, protocol):
        out = simulate_trade(protocol, "trader", aec(100_000))
        assert out > 0
        assert protocol.aec.balance_of(protocol.aec.tax_account) == aec(2_000)

    def test_tick(self, taxed_protocol):
        keeper = Keeper(taxed_protocol, "keeper", 3_600)
        report = keeper.tick()
        assert report is not None and not report.skipped
        assert taxed_protocol.aec.balance_of("keeper") == aec(2)
        assert keeper.tick() is None
        assert len(keeper.reports) == 1

    @pytest.mark.asyncio
    async def test_run_with_manual_clock(self, protocol, clock):
        start = clock()
        keeper = Keeper(protocol, "keeper", 3_600)
        await keeper.run(cycles=3, trade_volume=aec(100_000))
        assert len(keeper.reports) == 3
        assert all(not r.skipped for r in keeper.reports)
        assert clock() == start + 3 * 3_600
        assert protocol.engine.cycles_run == 3

    @pytest.mark.asyncio
    async def test_run_respects_cooldown(self, protocol):
        keeper = Keeper(protocol, "keeper", 1_800)
        await keeper.run(cycles=3, trade_volume=aec(100_000))
        assert len(keeper.reports) == 2

    @pytest.mark.asyncio
    async def test_endowment_release_over_a_month(self, protocol):
        keeper = Keeper(protocol, "keeper", SECONDS_PER_DAY)
        await keeper.run(cycles=31)
        assert protocol.endowment.release_count == 1
        assert protocol.engine.total_endowment_received == protocol.endowment.total_released
