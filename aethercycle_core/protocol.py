"""
Protocol wiring for AetherCycle.

:func:`build_protocol` deploys a complete, sealed system from an
:class:`~aethercycle_core.config.AetherCycleConfig`:

  1. AEC (taxed), the stablecoin and the AEC/stable market pair
  2. the endowment, funded with its seed and sealed
  3. the three staking pools, funded with their base allocations
  4. the cycle engine, attached to the token tax and the endowment
  5. a seeded market and registered staking targets

The result is an :class:`AetherCycleProtocol` bundle that the keeper
runner, the HTTP API and the tests all share.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from aethercycle_core.clock import Clock, system_clock
from aethercycle_core.config import AetherCycleConfig
from aethercycle_core.endowment import PerpetualEndowment
from aethercycle_core.engine import CycleEngine
from aethercycle_core.market import ConstantProductRouter
from aethercycle_core.precision import aec as to_units
from aethercycle_core.staking import (
    LPStakingPool,
    NFTStakingPool,
    RewardPool,
    TokenStakingPool,
)
from aethercycle_core.token import NFTRegistry, TaxedToken, TokenLedger

log = logging.getLogger("aethercycle.protocol")

SEED_DEADLINE = 300


@dataclass
class AetherCycleProtocol:
    """Every deployed component of one protocol instance."""
    config: AetherCycleConfig
    clock: Clock
    deployer: str
    aec: TaxedToken
    stable: TokenLedger
    lp_token: TokenLedger
    nft: NFTRegistry
    market: ConstantProductRouter
    endowment: PerpetualEndowment
    lp_pool: LPStakingPool
    token_pool: TokenStakingPool
    nft_pool: NFTStakingPool
    engine: CycleEngine

    @property
    def pools(self) -> dict[str, RewardPool]:
        return {"lp": self.lp_pool, "token": self.token_pool, "nft": self.nft_pool}

    @property
    def fungible_tokens(self) -> list[TokenLedger]:
        return [self.aec, self.stable, self.lp_token]

    def pool(self, name: str) -> RewardPool:
        try:
            return self.pools[name]
        except KeyError:
            raise KeyError(f"Unknown pool: {name}") from None

    def recent_events(self, limit: int = 50) -> list[dict]:
        """Most recent events across every component, oldest first."""
        logs = [self.engine.events, self.endowment.events,
                *(p.events for p in self.pools.values())]
        merged = [e for event_log in logs for e in event_log]
        merged.sort(key=lambda e: e.timestamp)
        return [e.to_dict() for e in merged[-limit:]] if limit > 0 else []

    def status(self) -> dict:
        return {
            "timestamp": self.clock(),
            "engine": self.engine.status(),
            "endowment": self.endowment.get_endowment_status(),
            "pools": {name: p.get_pool_summary() for name, p in self.pools.items()},
            "market": self.market.get_pairs(),
            "aec": {**self.aec.to_dict(), "total_tax_collected": self.aec.total_tax_collected},
        }


def build_protocol(config: AetherCycleConfig | None = None,
                   clock: Clock = system_clock) -> AetherCycleProtocol:
    cfg = config or AetherCycleConfig()
    deployer = cfg.engine.deployer
    engine_address = cfg.engine.address

    aec = TaxedToken("AEC", minter=deployer, tax_bps=cfg.market.tax_bps)
    stable = TokenLedger(cfg.market.stable_symbol, minter=deployer)
    aec.set_tax_exempt(deployer)

    market = ConstantProductRouter(clock=clock, trading_fee=cfg.market.trading_fee_bps)
    market.register_token(aec)
    market.register_token(stable)
    pair = market.create_pair(aec.address, stable.address)
    lp_token = pair.lp_token

    endowment = PerpetualEndowment(
        aec, engine=engine_address, custodian=cfg.endowment.custodian,
        initial_amount=to_units(cfg.endowment.initial_aec),
        release_interval=cfg.endowment.release_interval,
        clock=clock, address=cfg.endowment.address,
        estimated_call_cost=to_units(cfg.endowment.estimated_call_cost_aec),
    )

    duration = cfg.staking.rewards_duration
    lp_pool = LPStakingPool(lp_token, aec, engine_address,
                            base_allocation=to_units(cfg.staking.lp_allocation_aec),
                            clock=clock, rewards_duration=duration)
    token_pool = TokenStakingPool(aec, engine_address,
                                  base_allocation=to_units(cfg.staking.token_allocation_aec),
                                  clock=clock, rewards_duration=duration)
    nft = NFTRegistry()
    nft_pool = NFTStakingPool(nft, aec, engine_address,
                              base_allocation=to_units(cfg.staking.nft_allocation_aec),
                              clock=clock, rewards_duration=duration)

    engine = CycleEngine(aec, stable, market, endowment, lp_pool, lp_token,
                         deployer=deployer, config=cfg.engine.to_cycle_config(),
                         clock=clock, address=engine_address)
    for account in (endowment.address, lp_pool.address, token_pool.address,
                    nft_pool.address):
        aec.set_tax_exempt(account)
    aec.set_engine(engine.address)
    endowment.attach_engine(engine)

    # ── genesis funding ──────────────────────────────────────────
    aec.mint(deployer, deployer, endowment.initial_amount)
    aec.transfer(deployer, endowment.address, endowment.initial_amount)
    endowment.initialize(deployer)
    for pool in (lp_pool, token_pool, nft_pool):
        if pool.base_allocation == 0:
            continue
        aec.mint(deployer, deployer, pool.base_allocation)
        aec.transfer(deployer, pool.address, pool.base_allocation)
        pool.initialize(deployer)

    seed_aec = to_units(cfg.market.seed_aec)
    seed_stable = to_units(cfg.market.seed_stable)
    if seed_aec > 0 and seed_stable > 0:
        aec.mint(deployer, deployer, seed_aec)
        stable.mint(deployer, deployer, seed_stable)
        aec.approve(deployer, market.address, seed_aec)
        stable.approve(deployer, market.address, seed_stable)
        market.add_liquidity(deployer, aec.address, stable.address, seed_aec, seed_stable,
                             0, 0, cfg.market.liquidity_provider, clock() + SEED_DEADLINE)

    engine.set_staking_contracts(deployer, token_pool, nft_pool)
    if not cfg.endowment.compounding:
        engine.set_endowment_compounding(deployer, False)

    log.info(f"Protocol deployed: engine={engine.address} pair={pair.pair_id} "
             f"endowment={endowment.reserve} units")
    return AetherCycleProtocol(
        config=cfg, clock=clock, deployer=deployer, aec=aec, stable=stable,
        lp_token=lp_token, nft=nft, market=market, endowment=endowment,
        lp_pool=lp_pool, token_pool=token_pool, nft_pool=nft_pool, engine=engine,
    )
