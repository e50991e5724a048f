"""
Staking reward ledgers for AetherCycle.

Three pools share one reward engine (:class:`RewardPool`) and differ only
in what is staked:

  - :class:`LPStakingPool`    — AEC/stable LP tokens; holds the engine's
    permanent protocol-owned-liquidity stake
  - :class:`TokenStakingPool` — AEC itself; principal and rewards share
    one balance, and payouts never touch principal
  - :class:`NFTStakingPool`   — Aetheria NFTs, one unit of principal each

Reward-per-share accrual
────────────────────────
Every state-changing call first advances two accumulators:

    base_rps  += Δt × base_rate  × PRECISION / total_weighted
    bonus_rps += Δt × bonus_rate × PRECISION / bonus_weight

    earned = weighted × Δbase_rps / PRECISION
           + bonus_weighted × Δbonus_rps / PRECISION + rewards

Accrual is split into segments at every decay boundary and at the end
of the bonus stream, so each segment uses a constant rate.

Base emission (stepped geometric decay)
───────────────────────────────────────
Every ``DECAY_PERIOD`` (30 days):

    remaining -= remaining × 50 / 10 000
    base_rate  = remaining × 50 / (10 000 × DECAY_PERIOD)

Bonus emission
──────────────
The engine injects bonuses with ``notify_reward_amount``; each is merged
with the undistributed remainder of the current stream (plus truncation
carry) and dripped linearly over ``rewards_duration``.

In the LP pool the engine's own eternal stake receives its weighted share
of each bonus immediately; the remainder streams over public weight only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from aethercycle_core.clock import Clock, system_clock
from aethercycle_core.errors import AetherCycleError, Unauthorized, require_address
from aethercycle_core.events import EventLog
from aethercycle_core.precision import BASIS_POINTS, PRECISION, SECONDS_PER_DAY, aec
from aethercycle_core.token import NFTRegistry, TokenLedger

log = logging.getLogger("aethercycle.staking")


# ── Emission parameters ─────────────────────────────────────────────────

DECAY_RATE_BPS: int = 50
DECAY_PERIOD: int = 30 * SECONDS_PER_DAY

MIN_REWARDS_DURATION: int = 1 * SECONDS_PER_DAY
MAX_REWARDS_DURATION: int = 30 * SECONDS_PER_DAY
DEFAULT_REWARDS_DURATION: int = 7 * SECONDS_PER_DAY

MAX_LOCK_DURATION: int = 180 * SECONDS_PER_DAY
ETERNAL_UNLOCK: int = 2 ** 256 - 1

LP_ALLOCATION: int = aec(177_777_777)
TOKEN_ALLOCATION: int = aec(133_333_333)
NFT_ALLOCATION: int = aec(44_400_000)


# ── Tier definitions ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Tier:
    tier_id: int
    name: str
    lock_duration: int
    multiplier_bps: int
    user_selectable: bool = True

    def to_dict(self) -> dict:
        return {
            "tier_id": self.tier_id,
            "name": self.name,
            "lock_duration": self.lock_duration,
            "multiplier_bps": self.multiplier_bps,
            "user_selectable": self.user_selectable,
        }


ENGINE_TIER: int = 4

TIERS: tuple[Tier, ...] = (
    Tier(0, "Flexible",        0,                    10_000),
    Tier(1, "Monthly",         30 * SECONDS_PER_DAY, 11_000),
    Tier(2, "Quarterly",       90 * SECONDS_PER_DAY, 13_000),
    Tier(3, "Semi-Annual",     MAX_LOCK_DURATION,    16_000),
    Tier(ENGINE_TIER, "Protocol Engine", 0,          10_000, user_selectable=False),
)


class StakingError(AetherCycleError):
    """A staking operation was rejected."""


# ── Positions ───────────────────────────────────────────────────────────

@dataclass
class StakePosition:
    """One account's stake in one pool.  ``weighted >= principal`` always."""
    account: str
    principal: int = 0
    weighted: int = 0
    tier: int = 0
    unlock_time: int = 0
    base_paid: int = 0
    bonus_paid: int = 0
    rewards: int = 0
    is_engine: bool = False
    token_ids: set[int] = field(default_factory=set)

    @property
    def eternal(self) -> bool:
        return self.unlock_time == ETERNAL_UNLOCK


@dataclass
class _Accrual:
    base_rps: int
    bonus_rps: int
    remaining: int
    base_rate: int
    next_decay: int
    undistributed_bonus: int = 0


# ── Shared reward engine ────────────────────────────────────────────────

class RewardPool:
    """Reward-per-share accounting shared by every staking pool."""

    label = "Staking"
    proportional_return = False

    def __init__(self, reward_token: TokenLedger, engine: str, base_allocation: int,
                 clock: Clock = system_clock, address: str = "staking",
                 min_stake: int = 1,
                 rewards_duration: int = DEFAULT_REWARDS_DURATION):
        if reward_token is None:
            raise StakingError(f"{self.label}: Invalid token")
        self.engine = require_address(engine, f"{self.label}: Invalid engine")
        if base_allocation < 0:
            raise StakingError(f"{self.label}: Invalid allocation")
        if not MIN_REWARDS_DURATION <= rewards_duration <= MAX_REWARDS_DURATION:
            raise StakingError(f"{self.label}: Invalid duration")
        self.reward_token = reward_token
        self.base_allocation = base_allocation
        self.clock = clock
        self.address = address
        self.min_stake = min_stake
        self.rewards_duration = rewards_duration
        self.tiers = TIERS

        self.positions: dict[str, StakePosition] = {}
        self.total_principal: int = 0
        self.total_weighted: int = 0
        self.engine_weighted: int = 0

        self.base_rps: int = 0
        self.bonus_rps: int = 0
        self.last_update_time: int = clock()
        self.base_initialized: bool = False
        self.remaining_base_rewards: int = 0
        self.base_reward_rate: int = 0
        self.next_decay_time: int = 0
        self.bonus_reward_rate: int = 0
        self.bonus_period_finish: int = 0
        self.bonus_carry: int = 0

        self.total_bonus_notified: int = 0
        self.total_rewards_paid: int = 0
        self.events = EventLog(address, log)

    # ── accrual ─────────────────────────────────────────────────────

    def _bonus_weight(self) -> int:
        if self.proportional_return:
            return self.total_weighted - self.engine_weighted
        return self.total_weighted

    def _position_bonus_weight(self, pos: StakePosition) -> int:
        if self.proportional_return and pos.is_engine:
            return 0
        return pos.weighted

    def _simulate(self, now: int) -> _Accrual:
        acc = _Accrual(self.base_rps, self.bonus_rps, self.remaining_base_rewards,
                       self.base_reward_rate, self.next_decay_time)
        bonus_weight = self._bonus_weight()
        finish = self.bonus_period_finish
        t = self.last_update_time
        while t < now:
            end = now
            if acc.next_decay and acc.next_decay < end:
                end = acc.next_decay
            if t < finish < end:
                end = finish
            dt = end - t
            if self.total_weighted > 0:
                acc.base_rps += dt * acc.base_rate * PRECISION // self.total_weighted
            if t < finish:
                if bonus_weight > 0:
                    acc.bonus_rps += dt * self.bonus_reward_rate * PRECISION // bonus_weight
                else:
                    acc.undistributed_bonus += dt * self.bonus_reward_rate
            t = end
            if acc.next_decay and t == acc.next_decay:
                acc.remaining -= acc.remaining * DECAY_RATE_BPS // BASIS_POINTS
                acc.base_rate = acc.remaining * DECAY_RATE_BPS // (BASIS_POINTS * DECAY_PERIOD)
                acc.next_decay += DECAY_PERIOD
        return acc

    def _update_pool(self) -> None:
        now = self.clock()
        if now <= self.last_update_time:
            return
        acc = self._simulate(now)
        self.base_rps = acc.base_rps
        self.bonus_rps = acc.bonus_rps
        self.remaining_base_rewards = acc.remaining
        self.base_reward_rate = acc.base_rate
        self.next_decay_time = acc.next_decay
        self.bonus_carry += acc.undistributed_bonus
        self.last_update_time = now

    def _earned_at(self, pos: StakePosition, base_rps: int, bonus_rps: int) -> int:
        base = pos.weighted * (base_rps - pos.base_paid) // PRECISION
        bonus = self._position_bonus_weight(pos) * (bonus_rps - pos.bonus_paid) // PRECISION
        return pos.rewards + base + bonus

    def _update_reward(self, account: str) -> StakePosition:
        """Accrue the pool, then checkpoint ``account`` (creating it if new)."""
        self._update_pool()
        pos = self.positions.get(account)
        if pos is None:
            pos = StakePosition(account=account)
            self.positions[account] = pos
        else:
            pos.rewards = self._earned_at(pos, self.base_rps, self.bonus_rps)
        pos.base_paid = self.base_rps
        pos.bonus_paid = self.bonus_rps
        return pos

    def _set_position(self, pos: StakePosition, principal: int, tier: int) -> None:
        weighted = principal * self.tiers[tier].multiplier_bps // BASIS_POINTS
        self.total_principal += principal - pos.principal
        self.total_weighted += weighted - pos.weighted
        if pos.is_engine:
            self.engine_weighted += weighted - pos.weighted
        pos.principal = principal
        pos.weighted = weighted
        pos.tier = tier

    def _reward_available(self) -> int:
        """Reward token held by the pool that is not staked principal."""
        return self.reward_token.balance_of(self.address)

    # ── base emission ───────────────────────────────────────────────

    def initialize(self, caller: str) -> None:
        """Start the decaying base emission once the allocation is funded."""
        if self.base_initialized:
            raise StakingError(f"{self.label}: Already initialized")
        if self._reward_available() < self.base_allocation:
            raise StakingError(f"{self.label}: Insufficient balance")
        self._update_pool()
        now = self.clock()
        self.base_initialized = True
        self.remaining_base_rewards = self.base_allocation
        self.base_reward_rate = (self.base_allocation * DECAY_RATE_BPS
                                 // (BASIS_POINTS * DECAY_PERIOD))
        self.next_decay_time = now + DECAY_PERIOD
        log.info(f"{self.label} base emission started: {self.base_allocation} units")
        self.events.emit("BaseRewardsInitialized", now, amount=self.base_allocation,
                         caller=caller)

    # ── bonus emission ──────────────────────────────────────────────

    def notify_reward_amount(self, caller: str, amount: int) -> int:
        """
        Pull ``amount`` from the engine and stream it as bonus.

        Returns the part credited straight to the engine's own stake.
        """
        if caller != self.engine:
            raise Unauthorized(f"{self.label}: Only engine")
        if amount < 0:
            raise StakingError(f"{self.label}: Invalid amount")
        self.reward_token.check_pull(self.address, caller, amount)
        received = self.reward_token.net_transfer_amount(caller, self.address, amount)

        self._update_pool()
        now = self.clock()
        engine_share = 0
        if self.proportional_return and self.engine_weighted > 0 and received > 0:
            engine_share = received * self.engine_weighted // self.total_weighted
            engine_pos = self._update_reward(self.engine)
            engine_pos.rewards += engine_share

        streamed = received - engine_share
        leftover = 0
        if now < self.bonus_period_finish:
            leftover = (self.bonus_period_finish - now) * self.bonus_reward_rate
        total = streamed + leftover + self.bonus_carry
        self.bonus_reward_rate = total // self.rewards_duration
        self.bonus_carry = total - self.bonus_reward_rate * self.rewards_duration
        self.bonus_period_finish = now + self.rewards_duration
        self.total_bonus_notified += received

        self.reward_token.transfer_from(self.address, caller, self.address, amount)
        self.events.emit("RewardAdded", now, amount=received, engine_share=engine_share,
                         rate=self.bonus_reward_rate, finish=self.bonus_period_finish)
        return engine_share

    def set_rewards_duration(self, caller: str, seconds: int) -> None:
        if caller != self.engine:
            raise Unauthorized(f"{self.label}: Only engine")
        if not MIN_REWARDS_DURATION <= seconds <= MAX_REWARDS_DURATION:
            raise StakingError(f"{self.label}: Invalid duration")
        if self.clock() < self.bonus_period_finish:
            raise StakingError(f"{self.label}: Reward period active")
        self.rewards_duration = seconds
        self.events.emit("RewardsDurationUpdated", self.clock(), duration=seconds)

    # ── claims ──────────────────────────────────────────────────────

    def claim_reward(self, caller: str) -> int:
        if caller not in self.positions:
            return 0
        pos = self._update_reward(caller)
        reward = pos.rewards
        if reward == 0:
            return 0
        if reward > self._reward_available():
            raise StakingError(f"{self.label}: Insufficient reward balance")
        pos.rewards = 0
        self.total_rewards_paid += reward
        self.reward_token.transfer(self.address, caller, reward)
        self.events.emit("RewardPaid", self.clock(), account=caller, amount=reward)
        self._prune(pos)
        return reward

    def _prune(self, pos: StakePosition) -> None:
        if pos.principal == 0 and pos.rewards == 0 and not pos.is_engine:
            self.positions.pop(pos.account, None)

    # ── views ───────────────────────────────────────────────────────

    def last_time_reward_applicable(self) -> int:
        return min(self.clock(), self.bonus_period_finish)

    def reward_per_share(self) -> int:
        acc = self._simulate(self.clock())
        return acc.base_rps + acc.bonus_rps

    def earned(self, account: str) -> int:
        pos = self.positions.get(account)
        if pos is None:
            return 0
        acc = self._simulate(self.clock())
        return self._earned_at(pos, acc.base_rps, acc.bonus_rps)

    def get_stake_info(self, account: str) -> dict:
        pos = self.positions.get(account) or StakePosition(account=account)
        now = self.clock()
        return {
            "account": account,
            "principal": pos.principal,
            "weighted": pos.weighted,
            "tier": pos.tier,
            "tier_name": self.tiers[pos.tier].name,
            "unlock_time": pos.unlock_time,
            "eternal": pos.eternal,
            "earned": self.earned(account),
            "can_withdraw": pos.principal > 0 and not pos.eternal and now >= pos.unlock_time,
            "token_ids": sorted(pos.token_ids),
        }

    def get_pool_summary(self) -> dict:
        acc = self._simulate(self.clock())
        return {
            "address": self.address,
            "total_principal": self.total_principal,
            "total_weighted": self.total_weighted,
            "engine_weighted": self.engine_weighted,
            "stakers": sum(1 for p in self.positions.values() if p.principal > 0),
            "reward_per_share": acc.base_rps + acc.bonus_rps,
            "remaining_base_rewards": acc.remaining,
            "base_reward_rate": acc.base_rate,
            "bonus_reward_rate": self.bonus_reward_rate,
            "bonus_period_finish": self.bonus_period_finish,
            "rewards_duration": self.rewards_duration,
            "total_bonus_notified": self.total_bonus_notified,
            "total_rewards_paid": self.total_rewards_paid,
            "reward_balance": self._reward_available(),
        }


# ── Fungible-principal pools ────────────────────────────────────────────

class FungibleStakingPool(RewardPool):
    """A pool whose principal is a fungible token (LP or AEC)."""

    def __init__(self, staking_token: TokenLedger, reward_token: TokenLedger,
                 engine: str, base_allocation: int, **kwargs):
        super().__init__(reward_token, engine, base_allocation, **kwargs)
        if staking_token is None:
            raise StakingError(f"{self.label}: Invalid token")
        self.staking_token = staking_token

    def _shares_token(self) -> bool:
        return self.staking_token is self.reward_token

    def _reward_available(self) -> int:
        balance = self.reward_token.balance_of(self.address)
        if self._shares_token():
            return balance - self.total_principal
        return balance

    def unaccounted_custody(self) -> int:
        """Staking tokens held by the pool but not yet credited to anyone."""
        if self._shares_token():
            return 0
        return self.staking_token.balance_of(self.address) - self.total_principal

    def _tier(self, tier: int) -> Tier:
        if not 0 <= tier < len(self.tiers) or not self.tiers[tier].user_selectable:
            raise StakingError(f"{self.label}: Invalid tier")
        return self.tiers[tier]

    # ── staking ─────────────────────────────────────────────────────

    def stake(self, caller: str, amount: int, tier: int = 0) -> None:
        tier_cfg = self._tier(tier)
        if caller == self.engine:
            raise StakingError(f"{self.label}: Engine must use stake_for_engine")
        if amount <= 0:
            raise StakingError(f"{self.label}: Zero amount")
        if amount < self.min_stake:
            raise StakingError(f"{self.label}: Amount too small")
        now = self.clock()
        existing = self.positions.get(caller)
        if existing is not None and existing.principal > 0:
            if tier < existing.tier:
                raise StakingError(f"{self.label}: Cannot reduce tier")
            if tier != existing.tier and now < existing.unlock_time:
                raise StakingError(f"{self.label}: Still locked")
        self.staking_token.check_pull(self.address, caller, amount)
        received = self.staking_token.net_transfer_amount(caller, self.address, amount)

        pos = self._update_reward(caller)
        self._set_position(pos, pos.principal + received, tier)
        pos.unlock_time = now + tier_cfg.lock_duration
        self.staking_token.transfer_from(self.address, caller, self.address, amount)
        self.events.emit("Staked", now, account=caller, amount=received, tier=tier,
                         weighted=pos.weighted, unlock_time=pos.unlock_time)

    def stake_for_engine(self, caller: str, amount: int) -> None:
        """
        Add to the engine's eternal position.  Tokens already sitting in
        the pool's custody are used first; otherwise they are pulled.
        """
        if caller != self.engine:
            raise Unauthorized(f"{self.label}: Only engine")
        if amount <= 0:
            raise StakingError(f"{self.label}: Zero amount")
        prefunded = self.unaccounted_custody() >= amount
        if not prefunded:
            self.staking_token.check_pull(self.address, caller, amount)

        pos = self._update_reward(caller)
        pos.is_engine = True
        self._set_position(pos, pos.principal + amount, ENGINE_TIER)
        pos.unlock_time = ETERNAL_UNLOCK
        if not prefunded:
            self.staking_token.transfer_from(self.address, caller, self.address, amount)
        self.events.emit("EngineStaked", self.clock(), amount=amount,
                         prefunded=prefunded, total=pos.principal)

    def upgrade_tier(self, caller: str, new_tier: int) -> None:
        pos = self.positions.get(caller)
        if pos is None or pos.principal == 0:
            raise StakingError(f"{self.label}: No stake")
        if pos.is_engine:
            raise StakingError(f"{self.label}: Eternal stakers cannot modify")
        if new_tier <= pos.tier or new_tier >= len(self.tiers) \
                or not self.tiers[new_tier].user_selectable:
            raise StakingError(f"{self.label}: Invalid tier upgrade")
        now = self.clock()
        pos = self._update_reward(caller)
        old = pos.tier
        self._set_position(pos, pos.principal, new_tier)
        pos.unlock_time = now + self.tiers[new_tier].lock_duration
        self.events.emit("TierUpgraded", now, account=caller, old_tier=old,
                         new_tier=new_tier, unlock_time=pos.unlock_time)

    def withdraw(self, caller: str, amount: int) -> None:
        if amount <= 0:
            raise StakingError(f"{self.label}: Cannot withdraw 0")
        pos = self.positions.get(caller)
        if pos is not None and (pos.is_engine or pos.eternal):
            raise StakingError(f"{self.label}: Eternal stakers cannot withdraw")
        if pos is None or pos.principal < amount:
            raise StakingError(f"{self.label}: Insufficient balance")
        now = self.clock()
        if now < pos.unlock_time:
            raise StakingError(f"{self.label}: Still locked")

        pos = self._update_reward(caller)
        remaining = pos.principal - amount
        self._set_position(pos, remaining, pos.tier if remaining else 0)
        if remaining == 0:
            pos.unlock_time = 0
        self.staking_token.transfer(self.address, caller, amount)
        self.events.emit("Withdrawn", now, account=caller, amount=amount,
                         remaining=remaining)
        self._prune(pos)

    def exit(self, caller: str) -> tuple[int, int]:
        """Withdraw everything and claim.  Returns ``(principal, reward)``."""
        pos = self.positions.get(caller)
        principal = pos.principal if pos is not None else 0
        if principal:
            self.withdraw(caller, principal)
        return principal, self.claim_reward(caller)


class LPStakingPool(FungibleStakingPool):
    """AEC/stable LP staking with the engine's protocol-owned stake."""

    label = "StakingLP"
    proportional_return = True

    def __init__(self, lp_token: TokenLedger, reward_token: TokenLedger, engine: str,
                 base_allocation: int = LP_ALLOCATION, clock: Clock = system_clock,
                 address: str = "staking:lp", min_stake: int = aec("0.001"), **kwargs):
        super().__init__(lp_token, reward_token, engine, base_allocation,
                         clock=clock, address=address, min_stake=min_stake, **kwargs)


class TokenStakingPool(FungibleStakingPool):
    """AEC staking; rewards are paid from the non-principal balance."""

    label = "TokenStaking"

    def __init__(self, aec_token: TokenLedger, engine: str,
                 base_allocation: int = TOKEN_ALLOCATION, clock: Clock = system_clock,
                 address: str = "staking:token", min_stake: int = aec(1), **kwargs):
        super().__init__(aec_token, aec_token, engine, base_allocation,
                         clock=clock, address=address, min_stake=min_stake, **kwargs)


# ── NFT pool ────────────────────────────────────────────────────────────

class NFTStakingPool(RewardPool):
    """Aetheria NFT staking: each NFT is one unit of principal at 1.0×."""

    label = "NFTStaking"

    def __init__(self, nft: NFTRegistry, reward_token: TokenLedger, engine: str,
                 base_allocation: int = NFT_ALLOCATION, clock: Clock = system_clock,
                 address: str = "staking:nft", **kwargs):
        super().__init__(reward_token, engine, base_allocation, clock=clock,
                         address=address, min_stake=1, **kwargs)
        if nft is None:
            raise StakingError(f"{self.label}: Invalid NFT")
        self.nft = nft

    def _validate_ids(self, token_ids) -> list[int]:
        ids = list(token_ids)
        if not ids:
            raise StakingError(f"{self.label}: No tokens")
        if len(set(ids)) != len(ids):
            raise StakingError(f"{self.label}: Duplicate token")
        return ids

    def stake_nfts(self, caller: str, token_ids) -> None:
        ids = self._validate_ids(token_ids)
        for token_id in ids:
            if self.nft.owners.get(token_id) != caller:
                raise StakingError(f"{self.label}: Invalid token")
            if (self.nft.approvals.get(token_id) != self.address
                    and (caller, self.address) not in self.nft.operators):
                raise StakingError(f"{self.label}: Not approved")

        pos = self._update_reward(caller)
        self._set_position(pos, pos.principal + len(ids), 0)
        for token_id in ids:
            self.nft.transfer_from(self.address, caller, self.address, token_id)
            pos.token_ids.add(token_id)
        self.events.emit("NFTsStaked", self.clock(), account=caller, token_ids=ids,
                         total=pos.principal)

    def unstake_nfts(self, caller: str, token_ids) -> None:
        ids = self._validate_ids(token_ids)
        pos = self.positions.get(caller)
        if pos is None or any(t not in pos.token_ids for t in ids):
            raise StakingError(f"{self.label}: Not owner")

        pos = self._update_reward(caller)
        self._set_position(pos, pos.principal - len(ids), 0)
        for token_id in ids:
            pos.token_ids.discard(token_id)
            self.nft.transfer_from(self.address, self.address, caller, token_id)
        self.events.emit("NFTsUnstaked", self.clock(), account=caller, token_ids=ids,
                         remaining=pos.principal)
        self._prune(pos)

    def exit(self, caller: str) -> tuple[int, int]:
        pos = self.positions.get(caller)
        count = pos.principal if pos is not None else 0
        if count:
            self.unstake_nfts(caller, sorted(pos.token_ids))
        return count, self.claim_reward(caller)
