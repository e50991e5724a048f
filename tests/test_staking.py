"""
Tests for the staking reward ledgers.

Covers:
  - Tiered stake, lock and withdraw lifecycle
  - Stepped geometric decay of the base emission
  - Bonus streaming, leftover merge and idle-period carry
  - Proportional return to the engine's eternal LP stake
  - Eternal-stake immutability
  - Token pool principal protection
  - NFT stake / unstake
"""

import pytest

from aethercycle_core.clock import ManualClock
from aethercycle_core.errors import Unauthorized
from aethercycle_core.invariants import check_pool_totals
from aethercycle_core.precision import SECONDS_PER_DAY, aec
from aethercycle_core.staking import (
    DECAY_PERIOD,
    ENGINE_TIER,
    ETERNAL_UNLOCK,
    LPStakingPool,
    NFTStakingPool,
    StakingError,
    TokenStakingPool,
)
from aethercycle_core.token import LedgerError, NFTRegistry, TokenLedger

WEEK = 7 * SECONDS_PER_DAY
TOLERANCE = aec("0.001")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def lp_token():
    return TokenLedger("LP")


@pytest.fixture
def lp_pool(lp_token, reward_token, clock):
    """LP pool with no base allocation so only bonuses flow."""
    return LPStakingPool(lp_token, reward_token, "engine", base_allocation=0, clock=clock)


@pytest.fixture
def based_pool(lp_token, reward_token, clock):
    """LP pool emitting a 1,000,000 AEC base allocation."""
    pool = LPStakingPool(lp_token, reward_token, "engine",
                         base_allocation=aec(1_000_000), clock=clock)
    reward_token.mint("treasury", pool.address, aec(1_000_000))
    pool.initialize("deployer")
    return pool


def _stake(pool, token, who, amount, tier=0):
    token.mint("treasury", who, amount)
    token.approve(who, pool.address, amount)
    pool.stake(who, amount, tier)


def _notify(pool, reward_token, amount):
    if amount:
        reward_token.mint("treasury", "engine", amount)
    reward_token.approve("engine", pool.address, amount)
    return pool.notify_reward_amount("engine", amount)


def _engine_stake(pool, lp_token, amount):
    lp_token.mint("treasury", "engine", amount)
    lp_token.approve("engine", pool.address, amount)
    pool.stake_for_engine("engine", amount)


class TestStakeLifecycle:

    def test_stake_records_weight(self, lp_pool, lp_token, clock):
        _stake(lp_pool, lp_token, "alice", aec(100), tier=0)
        _stake(lp_pool, lp_token, "bob", aec(100), tier=3)
        info = lp_pool.get_stake_info("bob")
        assert info["weighted"] == aec(160)
        assert info["unlock_time"] == clock() + 180 * SECONDS_PER_DAY
        assert lp_pool.total_weighted == aec(260)
        assert lp_pool.total_principal == aec(200)
        assert check_pool_totals(lp_pool) == (True, "")

    def test_invalid_tier(self, lp_pool, lp_token):
        lp_token.mint("treasury", "alice", aec(1))
        lp_token.approve("alice", lp_pool.address, aec(1))
        with pytest.raises(StakingError, match="Invalid tier"):
            lp_pool.stake("alice", aec(1), ENGINE_TIER)
        with pytest.raises(StakingError, match="Invalid tier"):
            lp_pool.stake("alice", aec(1), 9)

    def test_minimum_stake(self, lp_pool, lp_token):
        with pytest.raises(StakingError, match="Zero amount"):
            lp_pool.stake("alice", 0)
        with pytest.raises(StakingError, match="Amount too small"):
            lp_pool.stake("alice", aec("0.0001"))

    def test_locked_withdraw_rejected(self, lp_pool, lp_token, clock):
        _stake(lp_pool, lp_token, "bob", aec(100), tier=1)
        clock.advance(29 * SECONDS_PER_DAY)
        with pytest.raises(StakingError, match="Still locked"):
            lp_pool.withdraw("bob", aec(100))
        clock.advance(SECONDS_PER_DAY)
        lp_pool.withdraw("bob", aec(100))
        assert lp_token.balance_of("bob") == aec(100)

    def test_cannot_reduce_tier(self, lp_pool, lp_token):
        _stake(lp_pool, lp_token, "bob", aec(10), tier=2)
        with pytest.raises(StakingError, match="Cannot reduce tier"):
            _stake(lp_pool, lp_token, "bob", aec(10), tier=1)

    def test_tier_change_blocked_while_locked(self, lp_pool, lp_token, clock):
        _stake(lp_pool, lp_token, "bob", aec(10), tier=1)
        with pytest.raises(StakingError, match="Still locked"):
            _stake(lp_pool, lp_token, "bob", aec(10), tier=2)
        clock.advance(30 * SECONDS_PER_DAY)
        _stake(lp_pool, lp_token, "bob", aec(10), tier=2)
        assert lp_pool.positions["bob"].weighted == aec(20) * 13_000 // 10_000

    def test_no_double_withdrawal(self, lp_pool, lp_token):
        _stake(lp_pool, lp_token, "alice", aec(100))
        lp_pool.withdraw("alice", aec(100))
        with pytest.raises(StakingError, match="Insufficient balance"):
            lp_pool.withdraw("alice", aec(100))
        assert lp_token.balance_of("alice") == aec(100)
        assert lp_pool.total_principal == 0

    def test_withdraw_zero(self, lp_pool):
        with pytest.raises(StakingError, match="Cannot withdraw 0"):
            lp_pool.withdraw("alice", 0)

    def test_upgrade_tier(self, lp_pool, lp_token, clock):
        _stake(lp_pool, lp_token, "alice", aec(100), tier=1)
        lp_pool.upgrade_tier("alice", 3)
        pos = lp_pool.positions["alice"]
        assert pos.weighted == aec(160)
        assert pos.unlock_time == clock() + 180 * SECONDS_PER_DAY
        with pytest.raises(StakingError, match="Invalid tier upgrade"):
            lp_pool.upgrade_tier("alice", 2)
        with pytest.raises(StakingError, match="Invalid tier upgrade"):
            lp_pool.upgrade_tier("alice", ENGINE_TIER)

    def test_upgrade_without_stake(self, lp_pool):
        with pytest.raises(StakingError, match="No stake"):
            lp_pool.upgrade_tier("nobody", 2)

    def test_exit_returns_principal_and_reward(self, lp_pool, lp_token, reward_token, clock):
        _stake(lp_pool, lp_token, "alice", aec(100))
        _notify(lp_pool, reward_token, aec(700))
        clock.advance(WEEK)
        principal, reward = lp_pool.exit("alice")
        assert principal == aec(100)
        assert abs(reward - aec(700)) < TOLERANCE
        assert "alice" not in lp_pool.positions


class TestBaseEmission:

    def test_initialize_requires_funding(self, lp_token, reward_token, clock):
        pool = LPStakingPool(lp_token, reward_token, "engine",
                             base_allocation=aec(10), clock=clock)
        with pytest.raises(StakingError, match="Insufficient balance"):
            pool.initialize("deployer")

    def test_initialize_once(self, based_pool):
        with pytest.raises(StakingError, match="Already initialized"):
            based_pool.initialize("deployer")

    def test_first_period_emits_half_percent(self, based_pool, lp_token, clock):
        _stake(based_pool, lp_token, "alice", aec(100))
        clock.advance(DECAY_PERIOD)
        assert abs(based_pool.earned("alice") - aec(5_000)) < TOLERANCE

    def test_decay_step(self, based_pool, lp_token, clock):
        _stake(based_pool, lp_token, "alice", aec(100))
        clock.advance(DECAY_PERIOD)
        summary = based_pool.get_pool_summary()
        assert summary["remaining_base_rewards"] == aec(995_000)
        assert summary["base_reward_rate"] == aec(995_000) * 50 // (10_000 * DECAY_PERIOD)

    def test_accrual_split_at_boundary(self, based_pool, lp_token, clock):
        _stake(based_pool, lp_token, "alice", aec(100))
        clock.advance(DECAY_PERIOD + DECAY_PERIOD // 2)
        expected = aec(5_000) + aec(995_000) * 50 // 10_000 // 2
        assert abs(based_pool.earned("alice") - expected) < TOLERANCE

    def test_claim_pays_out(self, based_pool, lp_token, reward_token, clock):
        _stake(based_pool, lp_token, "alice", aec(100))
        clock.advance(DECAY_PERIOD)
        paid = based_pool.claim_reward("alice")
        assert reward_token.balance_of("alice") == paid
        assert based_pool.earned("alice") == 0
        assert based_pool.claim_reward("nobody") == 0

    def test_reward_per_share_monotonic(self, based_pool, lp_token, reward_token, clock):
        seen = [based_pool.reward_per_share()]
        _stake(based_pool, lp_token, "alice", aec(100))
        for step in range(6):
            clock.advance(11 * SECONDS_PER_DAY)
            if step == 2:
                _notify(based_pool, reward_token, aec(50))
            if step == 4:
                based_pool.withdraw("alice", aec(40))
            seen.append(based_pool.reward_per_share())
        assert seen == sorted(seen)


class TestBonusStream:

    def test_only_engine_notifies(self, lp_pool, reward_token):
        reward_token.mint("treasury", "mallory", aec(1))
        reward_token.approve("mallory", lp_pool.address, aec(1))
        with pytest.raises(Unauthorized, match="Only engine"):
            lp_pool.notify_reward_amount("mallory", aec(1))

    def test_stream_over_duration(self, lp_pool, lp_token, reward_token, clock):
        _stake(lp_pool, lp_token, "alice", aec(300))
        _notify(lp_pool, reward_token, aec(700))
        assert lp_pool.bonus_period_finish == clock() + WEEK
        clock.advance(WEEK // 2)
        assert abs(lp_pool.earned("alice") - aec(350)) < TOLERANCE
        clock.advance(WEEK)
        assert abs(lp_pool.earned("alice") - aec(700)) < TOLERANCE

    def test_leftover_merged(self, lp_pool, lp_token, reward_token, clock):
        _stake(lp_pool, lp_token, "alice", aec(100))
        _notify(lp_pool, reward_token, aec(700))
        clock.advance(WEEK // 2)
        _notify(lp_pool, reward_token, 0)
        clock.advance(WEEK)
        assert abs(lp_pool.earned("alice") - aec(700)) < TOLERANCE

    def test_idle_bonus_carried(self, lp_pool, lp_token, reward_token, clock):
        _notify(lp_pool, reward_token, aec(700))
        clock.advance(WEEK // 2)
        _stake(lp_pool, lp_token, "alice", aec(100))
        clock.advance(WEEK)
        _notify(lp_pool, reward_token, 0)
        clock.advance(WEEK)
        assert abs(lp_pool.earned("alice") - aec(700)) < TOLERANCE

    def test_pull_failure_leaves_no_state(self, lp_pool, reward_token):
        reward_token.mint("treasury", "engine", aec(10))
        with pytest.raises(LedgerError):
            lp_pool.notify_reward_amount("engine", aec(10))
        assert lp_pool.bonus_reward_rate == 0
        assert lp_pool.total_bonus_notified == 0

    def test_rewards_duration(self, lp_pool, reward_token, clock):
        with pytest.raises(Unauthorized):
            lp_pool.set_rewards_duration("alice", 3 * SECONDS_PER_DAY)
        with pytest.raises(StakingError, match="Invalid duration"):
            lp_pool.set_rewards_duration("engine", 31 * SECONDS_PER_DAY)
        _notify(lp_pool, reward_token, aec(10))
        with pytest.raises(StakingError, match="Reward period active"):
            lp_pool.set_rewards_duration("engine", 3 * SECONDS_PER_DAY)
        clock.advance(WEEK)
        lp_pool.set_rewards_duration("engine", 3 * SECONDS_PER_DAY)
        assert lp_pool.rewards_duration == 3 * SECONDS_PER_DAY


class TestEngineStake:

    def test_eternal_position(self, lp_pool, lp_token):
        _engine_stake(lp_pool, lp_token, aec(100))
        pos = lp_pool.positions["engine"]
        assert pos.eternal
        assert pos.unlock_time == ETERNAL_UNLOCK
        assert pos.tier == ENGINE_TIER
        assert lp_pool.engine_weighted == aec(100)

    def test_eternal_stake_cannot_withdraw(self, lp_pool, lp_token):
        _engine_stake(lp_pool, lp_token, aec(100))
        with pytest.raises(StakingError, match="Eternal stakers cannot withdraw"):
            lp_pool.withdraw("engine", aec(1))
        with pytest.raises(StakingError):
            lp_pool.exit("engine")
        with pytest.raises(StakingError, match="Eternal stakers cannot modify"):
            lp_pool.upgrade_tier("engine", 3)
        assert lp_pool.positions["engine"].principal == aec(100)

    def test_engine_cannot_use_public_stake(self, lp_pool, lp_token):
        lp_token.mint("treasury", "engine", aec(1))
        lp_token.approve("engine", lp_pool.address, aec(1))
        with pytest.raises(StakingError):
            lp_pool.stake("engine", aec(1))

    def test_stake_for_engine_only_engine(self, lp_pool):
        with pytest.raises(Unauthorized):
            lp_pool.stake_for_engine("alice", aec(1))

    def test_prefunded_custody(self, lp_pool, lp_token):
        lp_token.mint("treasury", lp_pool.address, aec(5))
        assert lp_pool.unaccounted_custody() == aec(5)
        lp_pool.stake_for_engine("engine", aec(5))
        assert lp_pool.unaccounted_custody() == 0
        assert lp_pool.events.last("EngineStaked")["prefunded"] is True

    def test_proportional_return(self, lp_pool, lp_token, reward_token, clock):
        _engine_stake(lp_pool, lp_token, aec(100))
        _stake(lp_pool, lp_token, "alice", aec(300))
        engine_share = _notify(lp_pool, reward_token, aec(1_000))
        assert engine_share == aec(250)
        assert lp_pool.earned("engine") == aec(250)
        clock.advance(WEEK)
        assert lp_pool.earned("engine") == aec(250)
        assert abs(lp_pool.earned("alice") - aec(750)) < TOLERANCE
        assert lp_pool.claim_reward("engine") == aec(250)
        assert reward_token.balance_of("engine") == aec(250)

    def test_engine_position_kept_after_claim(self, lp_pool, lp_token, reward_token):
        _engine_stake(lp_pool, lp_token, aec(100))
        _notify(lp_pool, reward_token, aec(10))
        lp_pool.claim_reward("engine")
        assert "engine" in lp_pool.positions


class TestTokenPool:

    @pytest.fixture
    def token_pool(self, reward_token, clock):
        return TokenStakingPool(reward_token, "engine", base_allocation=0, clock=clock)

    def test_principal_not_paid_as_reward(self, token_pool, reward_token, clock):
        _stake(token_pool, reward_token, "alice", aec(100))
        clock.advance(WEEK)
        assert token_pool.claim_reward("alice") == 0
        assert token_pool.get_pool_summary()["reward_balance"] == 0
        assert reward_token.balance_of(token_pool.address) == aec(100)

    def test_bonus_paid_from_surplus(self, token_pool, reward_token, clock):
        _stake(token_pool, reward_token, "alice", aec(100))
        _notify(token_pool, reward_token, aec(70))
        clock.advance(WEEK)
        paid = token_pool.claim_reward("alice")
        assert abs(paid - aec(70)) < TOLERANCE
        assert reward_token.balance_of(token_pool.address) >= token_pool.total_principal

    def test_minimum_one_aec(self, token_pool, reward_token):
        reward_token.mint("treasury", "alice", aec(1))
        reward_token.approve("alice", token_pool.address, aec(1))
        with pytest.raises(StakingError, match="Amount too small"):
            token_pool.stake("alice", aec("0.5"))

    def test_no_engine_custody(self, token_pool):
        assert token_pool.unaccounted_custody() == 0


class TestNFTPool:

    @pytest.fixture
    def nft(self):
        registry = NFTRegistry()
        for token_id in (1, 2, 3):
            registry.mint("alice", token_id)
        return registry

    @pytest.fixture
    def nft_pool(self, nft, reward_token, clock):
        return NFTStakingPool(nft, reward_token, "engine", base_allocation=0, clock=clock)

    def test_stake_and_unstake(self, nft_pool, nft):
        nft.set_approval_for_all("alice", nft_pool.address, True)
        nft_pool.stake_nfts("alice", [1, 2])
        assert nft.owner_of(1) == nft_pool.address
        assert nft_pool.positions["alice"].principal == 2
        assert nft_pool.total_weighted == 2
        nft_pool.unstake_nfts("alice", [1])
        assert nft.owner_of(1) == "alice"
        assert nft_pool.get_stake_info("alice")["token_ids"] == [2]

    def test_requires_approval(self, nft_pool):
        with pytest.raises(StakingError, match="Not approved"):
            nft_pool.stake_nfts("alice", [1])

    def test_single_token_approval(self, nft_pool, nft):
        nft.approve("alice", nft_pool.address, 3)
        nft_pool.stake_nfts("alice", [3])
        assert nft.owner_of(3) == nft_pool.address

    def test_rejects_foreign_and_duplicate_ids(self, nft_pool, nft):
        nft.set_approval_for_all("alice", nft_pool.address, True)
        with pytest.raises(StakingError, match="Duplicate token"):
            nft_pool.stake_nfts("alice", [1, 1])
        with pytest.raises(StakingError, match="Invalid token"):
            nft_pool.stake_nfts("bob", [1])
        with pytest.raises(StakingError, match="No tokens"):
            nft_pool.stake_nfts("alice", [])

    def test_unstake_not_owner(self, nft_pool, nft):
        nft.set_approval_for_all("alice", nft_pool.address, True)
        nft_pool.stake_nfts("alice", [1])
        with pytest.raises(StakingError, match="Not owner"):
            nft_pool.unstake_nfts("bob", [1])

    def test_bonus_per_nft(self, nft_pool, nft, reward_token, clock):
        nft.set_approval_for_all("alice", nft_pool.address, True)
        nft_pool.stake_nfts("alice", [1, 2, 3])
        _notify(nft_pool, reward_token, aec(70))
        clock.advance(WEEK)
        count, reward = nft_pool.exit("alice")
        assert count == 3
        assert abs(reward - aec(70)) < TOLERANCE
        assert nft.balance_of("alice") == 3
