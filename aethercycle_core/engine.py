"""
Cycle Engine for AetherCycle.

The engine is the single permissionless entry point of the protocol.  One
call to :meth:`CycleEngine.run_cycle` collects everything owed to the
engine and turns it into three outputs:

    collect ─┬─ endowment release (when due and worth pulling)
             ├─ accumulated transfer tax
             └─ POL staking rewards
    split   ─┬─ burn            (burn_bps)
             ├─ liquidity       (auto_lp_bps)  → swap half, pair, stake LP
             └─ refill          (refill_bps)   → LP / Token / NFT pools
    payout  ─── caller reward  (caller_reward_bps of *new* tax only)

Every call into a collaborator goes through :func:`guarded`; a failing
sub-step leaves its AEC in the engine for the next cycle and is recorded
as an event, while the cycle itself still completes.

Adaptive swap
─────────────
Up to ``MAX_SWAP_ATTEMPTS`` rounds.  Each round tries to sell half of
``remaining``.  Success ends the search; failure halves ``remaining``
itself, so after five failures ``remaining == budget / 32``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Iterator

from aethercycle_core.calls import CallResult, guarded
from aethercycle_core.clock import Clock, system_clock
from aethercycle_core.endowment import PerpetualEndowment
from aethercycle_core.errors import (
    AetherCycleError,
    ConfigurationError,
    InvariantViolation,
    ReentrancyError,
    Unauthorized,
    require_address,
)
from aethercycle_core.events import EventLog
from aethercycle_core.market import MarketAdapter
from aethercycle_core.precision import BASIS_POINTS, SECONDS_PER_DAY, aec, bps_of
from aethercycle_core.staking import LPStakingPool, RewardPool
from aethercycle_core.token import TaxedToken, TokenLedger

log = logging.getLogger("aethercycle.engine")

VERSION = "1.0.0"

MAX_SWAP_ATTEMPTS: int = 5
MIN_SWAP_REMAINDER: int = aec(1)
MIN_EFFICIENCY_SCORE: int = 10
MAX_SLIPPAGE_BPS: int = 2_500
MAX_CALLER_REWARD_BPS: int = 100
MAX_COOLDOWN: int = SECONDS_PER_DAY
SWAP_DEADLINE: int = 300

# (name, AEC multiplier bps, stable multiplier bps, minimum bound bps)
LIQUIDITY_STRATEGIES: tuple[tuple[str, int, int, int], ...] = (
    ("conservative", 10_000, 10_000, 8_000),
    ("aec_heavy",    12_000, 10_000, 5_000),
    ("stable_heavy", 10_000, 12_000, 5_000),
    ("minimal",       2_500,  2_500,   250),
)


class CooldownNotElapsed(AetherCycleError):
    """run_cycle was called before the cooldown expired."""


# ── Configuration ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class CycleConfig:
    """Immutable cycle parameters, validated at construction."""
    burn_bps: int = 2_000
    auto_lp_bps: int = 4_000
    refill_bps: int = 4_000
    caller_reward_bps: int = 10
    slippage_bps: int = 100
    min_process_amount: int = aec(1_000)
    cooldown: int = 3_600
    refill_lp_bps: int = 5_000
    refill_token_bps: int = 3_750
    refill_nft_bps: int = 1_250

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            if value < 0:
                raise ConfigurationError(f"ENGINE: {name} must be non-negative")
        if self.burn_bps + self.auto_lp_bps + self.refill_bps != BASIS_POINTS:
            raise ConfigurationError("ENGINE: Allocation must total 10000 bps")
        if self.refill_lp_bps + self.refill_token_bps + self.refill_nft_bps != BASIS_POINTS:
            raise ConfigurationError("ENGINE: Refill split must total 10000 bps")
        if self.caller_reward_bps > MAX_CALLER_REWARD_BPS:
            raise ConfigurationError("ENGINE: Caller reward too high")
        if self.slippage_bps > MAX_SLIPPAGE_BPS:
            raise ConfigurationError("ENGINE: Slippage too high")
        if self.min_process_amount <= 0:
            raise ConfigurationError("ENGINE: Invalid minimum amount")
        if self.cooldown > MAX_COOLDOWN:
            raise ConfigurationError("ENGINE: Cooldown too long")

    def to_dict(self) -> dict:
        return asdict(self)


# ── Report ──────────────────────────────────────────────────────────────

@dataclass
class CycleReport:
    """Every sub-amount of one cycle.  Zero means the step did not run."""
    timestamp: int
    caller: str
    skipped: bool = False
    skip_reason: str = ""
    other_inflow: int = 0
    endowment_released: int = 0
    tax_collected: int = 0
    rewards_claimed: int = 0
    total_balance: int = 0
    caller_reward: int = 0
    burned: int = 0
    lp_budget: int = 0
    swap_attempts: int = 0
    swap_remaining: int = 0
    aec_swapped: int = 0
    stable_received: int = 0
    unutilized: int = 0
    liquidity_strategy: str = ""
    lp_aec_paired: int = 0
    lp_stable_paired: int = 0
    lp_tokens_minted: int = 0
    refill: dict[str, int] = field(default_factory=dict)
    refill_retained: int = 0

    @property
    def refilled(self) -> int:
        return sum(self.refill.values())

    def to_dict(self) -> dict:
        data = asdict(self)
        data["refilled"] = self.refilled
        return data


# ── Engine ──────────────────────────────────────────────────────────────

class CycleEngine:
    """Orchestrates collection, burn, liquidity, refill and payout."""

    def __init__(self, aec_token: TaxedToken, stable_token: TokenLedger,
                 market: MarketAdapter, endowment: PerpetualEndowment,
                 lp_pool: LPStakingPool, lp_token: TokenLedger,
                 deployer: str, config: CycleConfig | None = None,
                 clock: Clock = system_clock, address: str = "engine"):
        for name, dep in (("token", aec_token), ("stablecoin", stable_token),
                          ("router", market), ("endowment", endowment),
                          ("LP staking", lp_pool), ("LP token", lp_token)):
            if dep is None:
                raise ConfigurationError(f"ENGINE: Invalid {name}")
        self.deployer = require_address(deployer, "ENGINE: Invalid deployer")
        self.address = require_address(address, "ENGINE: Invalid address")
        self.aec = aec_token
        self.stable = stable_token
        self.market = market
        self.endowment = endowment
        self.lp_pool = lp_pool
        self.lp_token = lp_token
        self.config = config or CycleConfig()
        self.clock = clock

        self.token_pool: RewardPool | None = None
        self.nft_pool: RewardPool | None = None
        self.deployer_privileges_active: bool = True

        self.last_process_time: int = 0
        self.processing_in_progress: bool = False
        self.swap_in_progress: bool = False
        self.last_endowment_release: int = 0

        self.total_tax_collected: int = 0
        self.total_endowment_received: int = 0
        self.total_rewards_claimed: int = 0
        self.total_other_inflows: int = 0
        self.total_burned: int = 0
        self.total_lp_aec_deployed: int = 0
        self.total_lp_tokens_minted: int = 0
        self.total_refilled: dict[str, int] = {"lp": 0, "token": 0, "nft": 0}
        self.total_caller_rewards: int = 0
        self.cycles_run: int = 0

        self.events = EventLog(self.address, log)

    # ── guards ──────────────────────────────────────────────────────

    @contextmanager
    def _nonreentrant(self, flag: str) -> Iterator[None]:
        if getattr(self, flag):
            raise ReentrancyError(f"ENGINE: {flag} already active")
        setattr(self, flag, True)
        try:
            yield
        finally:
            setattr(self, flag, False)

    def _aec_balance(self) -> int:
        return self.aec.balance_of(self.address)

    def total_inflows(self) -> int:
        return (self.total_tax_collected + self.total_endowment_received
                + self.total_rewards_claimed + self.total_other_inflows)

    def total_outflows(self) -> int:
        return (self.total_burned + self.total_lp_aec_deployed
                + sum(self.total_refilled.values()) + self.total_caller_rewards)

    def cooldown_remaining(self) -> int:
        if self.last_process_time == 0:
            return 0
        return max(0, self.last_process_time + self.config.cooldown - self.clock())

    # ── main entry point ────────────────────────────────────────────

    def run_cycle(self, caller: str) -> CycleReport:
        """
        Run one full cycle on behalf of ``caller``.

        Raises :class:`CooldownNotElapsed` or :class:`ReentrancyError`
        without touching any state.  A balance below the processing
        threshold returns a report with ``skipped=True``.
        """
        if self.processing_in_progress:
            raise ReentrancyError("ENGINE: Processing in progress")
        if self.cooldown_remaining() > 0:
            raise CooldownNotElapsed("ENGINE: Cooldown not elapsed")

        with self._nonreentrant("processing_in_progress"):
            previous = self.last_process_time
            now = self.clock()
            self.last_process_time = now
            try:
                return self._process(caller, now, previous)
            except InvariantViolation:
                self.last_process_time = previous
                raise

    def _process(self, caller: str, now: int, previous: int) -> CycleReport:
        cfg = self.config
        report = CycleReport(timestamp=now, caller=caller)

        self._record_other_inflows(report)
        self._pull_endowment(report)
        self._collect_tax(report)
        self._claim_pol_rewards(report)

        balance = self._aec_balance()
        report.total_balance = balance
        if balance < cfg.min_process_amount:
            self.last_process_time = previous
            report.skipped = True
            report.skip_reason = "Below minimum"
            log.info(f"Cycle skipped: balance {balance} < {cfg.min_process_amount}")
            self.events.emit("ProcessingSkipped", now, caller=caller, balance=balance,
                             threshold=cfg.min_process_amount)
            return report

        caller_reward = 0
        if caller != self.address:
            caller_reward = bps_of(report.tax_collected, cfg.caller_reward_bps)
        if caller_reward > balance:
            raise InvariantViolation("ENGINE: Caller reward exceeds balance")
        distributable = balance - caller_reward
        burn_amount = bps_of(distributable, cfg.burn_bps)
        lp_budget = bps_of(distributable, cfg.auto_lp_bps)
        refill_amount = distributable - burn_amount - lp_budget
        report.caller_reward = caller_reward
        report.lp_budget = lp_budget

        self._burn(burn_amount, report)
        if lp_budget > 0:
            self._deploy_liquidity(lp_budget, caller_reward + refill_amount, report)
        self._refill(refill_amount, report)
        self._pay_caller(caller, caller_reward)

        self.cycles_run += 1
        log.info(f"Cycle {self.cycles_run} by {caller}: burned={report.burned} "
                 f"lp={report.lp_tokens_minted} refilled={report.refilled} "
                 f"reward={report.caller_reward}")
        fields = report.to_dict()
        del fields["timestamp"]
        self.events.emit("CycleProcessed", now, **fields)
        return report

    # ── collection ──────────────────────────────────────────────────

    def _record_other_inflows(self, report: CycleReport) -> None:
        unexplained = self._aec_balance() - (self.total_inflows() - self.total_outflows())
        if unexplained > 0:
            self.total_other_inflows += unexplained
            report.other_inflow = unexplained

    def _skip_endowment(self, reason: str) -> None:
        self.events.emit("EndowmentSkipped", self.clock(), reason=reason)

    def _pull_endowment(self, report: CycleReport) -> None:
        cfg = self.config
        suggestion = guarded(self.endowment.suggest_optimal_release)
        if not suggestion.ok:
            self._skip_endowment(f"Suggestion failed: {suggestion.error}")
            return
        should_release, amount, _periods, score = suggestion.value
        if not should_release:
            self._skip_endowment("Not due")
            return
        if score < MIN_EFFICIENCY_SCORE:
            self._skip_endowment("Inefficient")
            return
        if amount < cfg.min_process_amount // 10:
            self._skip_endowment("Below dust threshold")
            return
        result = guarded(self.endowment.release_funds, self.address)
        if not result.ok:
            self._skip_endowment(f"Release failed: {result.error}")
            return
        self._record_endowment(result.value)
        report.endowment_released = result.value

    def _record_endowment(self, amount: int) -> None:
        self.total_endowment_received += amount
        self.last_endowment_release = self.clock()

    def _collect_tax(self, report: CycleReport) -> None:
        tax_account = self.aec.tax_account
        available = min(self.aec.allowance(tax_account, self.address),
                        self.aec.balance_of(tax_account))
        if available <= 0:
            return
        result = guarded(self.aec.transfer_from, self.address, tax_account,
                         self.address, available)
        if result.ok:
            self.total_tax_collected += available
            report.tax_collected = available

    def _claim_pol_rewards(self, report: CycleReport) -> None:
        result = guarded(self.lp_pool.claim_reward, self.address)
        if not result.ok:
            self.events.emit("RewardClaimFailed", self.clock(), error=result.error)
            return
        claimed = result.value or 0
        self.total_rewards_claimed += claimed
        report.rewards_claimed = claimed

    # ── burn ────────────────────────────────────────────────────────

    def _burn(self, amount: int, report: CycleReport) -> None:
        if amount <= 0:
            return
        result = guarded(self.aec.burn, self.address, amount)
        if result.ok:
            self.total_burned += amount
            report.burned = amount
        else:
            self._unutilized(amount, "burn", result.error)

    def _unutilized(self, amount: int, step: str, error: str = "") -> None:
        log.info(f"{amount} units retained after failed {step}")
        self.events.emit("UnutilizedAecAccumulated", self.clock(), amount=amount,
                         step=step, error=error)

    # ── liquidity ───────────────────────────────────────────────────

    def _deploy_liquidity(self, lp_budget: int, earmarked: int,
                          report: CycleReport) -> None:
        with self._nonreentrant("swap_in_progress"):
            swapped, _, remaining = self._adaptive_swap(lp_budget, report)
            report.swap_remaining = remaining
            if swapped == 0:
                report.unutilized = lp_budget - remaining
                self._unutilized(lp_budget, "swap")
                return
            # Stable left over from earlier cycles is paired along with this
            # cycle's swap output, sized at its current AEC value.
            stable_held = self.stable.balance_of(self.address)
            available_aec = self._aec_balance() - earmarked
            paired = min(self._aec_value_of(stable_held, swapped), available_aec)
            self._add_liquidity(paired, stable_held, available_aec, report)

    def _aec_value_of(self, stable_amount: int, fallback: int) -> int:
        quote = guarded(self.market.get_amounts_out, stable_amount,
                        [self.stable.address, self.aec.address])
        if not quote.ok:
            return fallback
        return quote.value[-1]

    def _adaptive_swap(self, lp_budget: int, report: CycleReport) -> tuple[int, int, int]:
        remaining = lp_budget
        swapped = 0
        received = 0
        for attempt in range(1, MAX_SWAP_ATTEMPTS + 1):
            if remaining <= MIN_SWAP_REMAINDER:
                break
            chunk = remaining // 2
            result = self._try_swap(chunk)
            report.swap_attempts = attempt
            self.events.emit("SwapAttempt", self.clock(), attempt=attempt, amount=chunk,
                             success=result.ok, received=result.value or 0,
                             error=result.error)
            if result.ok:
                swapped = chunk
                received = result.value
                remaining -= chunk
                self.total_lp_aec_deployed += chunk
                break
            remaining //= 2
        report.aec_swapped = swapped
        report.stable_received = received
        return swapped, received, remaining

    def _try_swap(self, amount: int) -> CallResult[int]:
        path = [self.aec.address, self.stable.address]
        quote = guarded(self.market.get_amounts_out, amount, path)
        if not quote.ok:
            return CallResult(ok=False, error=quote.error)
        min_out = quote.value[-1] * (BASIS_POINTS - self.config.slippage_bps) // BASIS_POINTS
        if min_out == 0:
            return CallResult(ok=False, error="Quote too small")
        before = self.stable.balance_of(self.address)
        self.aec.approve(self.address, self.market.address, amount)
        result = guarded(self.market.swap_exact_tokens_for_tokens, self.address, amount,
                         min_out, path, self.address, self.clock() + SWAP_DEADLINE)
        self.aec.approve(self.address, self.market.address, 0)
        if not result.ok:
            return CallResult(ok=False, error=result.error)
        return CallResult(ok=True, value=self.stable.balance_of(self.address) - before)

    def _add_liquidity(self, paired: int, stable_held: int, available_aec: int,
                       report: CycleReport) -> None:
        for name, aec_bps, stable_bps, min_bps in LIQUIDITY_STRATEGIES:
            aec_amount = min(paired * aec_bps // BASIS_POINTS, available_aec)
            stable_amount = min(stable_held * stable_bps // BASIS_POINTS, stable_held)
            if aec_amount <= 0 or stable_amount <= 0:
                continue
            result = self._try_add_liquidity(aec_amount, stable_amount, min_bps)
            self.events.emit("LiquidityStrategyAttempt", self.clock(), strategy=name,
                             aec=aec_amount, stable=stable_amount, success=result.ok,
                             error=result.error)
            if not result.ok:
                continue
            aec_used, stable_used, lp_tokens = result.value
            self.total_lp_aec_deployed += aec_used
            self.total_lp_tokens_minted += lp_tokens
            report.liquidity_strategy = name
            report.lp_aec_paired = aec_used
            report.lp_stable_paired = stable_used
            report.lp_tokens_minted = lp_tokens
            self._stake_pol()
            return
        self._unutilized(paired, "liquidity")

    def _try_add_liquidity(self, aec_amount: int, stable_amount: int,
                           min_bps: int) -> CallResult[tuple[int, int, int]]:
        router = self.market.address
        self.aec.approve(self.address, router, aec_amount)
        self.stable.approve(self.address, router, stable_amount)
        result = guarded(self.market.add_liquidity, self.address,
                         self.aec.address, self.stable.address,
                         aec_amount, stable_amount,
                         aec_amount * min_bps // BASIS_POINTS,
                         stable_amount * min_bps // BASIS_POINTS,
                         self.lp_pool.address, self.clock() + SWAP_DEADLINE)
        self.aec.approve(self.address, router, 0)
        self.stable.approve(self.address, router, 0)
        return result

    def _stake_pol(self) -> None:
        custody = self.lp_pool.unaccounted_custody()
        if custody <= 0:
            return
        result = guarded(self.lp_pool.stake_for_engine, self.address, custody)
        if not result.ok:
            self.events.emit("PolStakeFailed", self.clock(), amount=custody,
                             error=result.error)

    # ── refill ──────────────────────────────────────────────────────

    def _refill(self, amount: int, report: CycleReport) -> None:
        if amount <= 0:
            return
        cfg = self.config
        lp_share = bps_of(amount, cfg.refill_lp_bps)
        token_share = bps_of(amount, cfg.refill_token_bps)
        targets = (
            ("lp", self.lp_pool, lp_share),
            ("token", self.token_pool, token_share),
            ("nft", self.nft_pool, amount - lp_share - token_share),
        )
        for name, pool, share in targets:
            if share <= 0:
                continue
            if pool is None:
                report.refill_retained += share
                self._unutilized(share, f"refill:{name}", "Pool not set")
                continue
            self.aec.approve(self.address, pool.address, share)
            result = guarded(pool.notify_reward_amount, self.address, share)
            if result.ok:
                self.total_refilled[name] += share
                report.refill[name] = share
            else:
                self.aec.approve(self.address, pool.address, 0)
                report.refill_retained += share
                self._unutilized(share, f"refill:{name}", result.error)

    # ── payout ──────────────────────────────────────────────────────

    def _pay_caller(self, caller: str, reward: int) -> None:
        if reward <= 0:
            return
        if self._aec_balance() < reward:
            raise InvariantViolation("ENGINE: Insufficient balance for caller reward")
        self.total_caller_rewards += reward
        self.aec.transfer(self.address, caller, reward)

    # ── callbacks ───────────────────────────────────────────────────

    def notify_endowment_release(self, caller: str, amount: int) -> CycleReport | None:
        """
        Record a release pushed by the endowment.  When idle and off
        cooldown, try to process it straight away with no caller reward.
        """
        if caller != self.endowment.address:
            raise Unauthorized("ENGINE: Only endowment")
        if self.processing_in_progress:
            return None
        self._record_endowment(amount)
        self.events.emit("EndowmentReleaseReceived", self.clock(), amount=amount)
        if self.cooldown_remaining() > 0:
            return None
        result = guarded(self.run_cycle, self.address)
        return result.value

    # ── deployer administration ─────────────────────────────────────

    def _only_deployer(self, caller: str) -> None:
        if caller != self.deployer or not self.deployer_privileges_active:
            raise Unauthorized("ENGINE: Not authorized")

    def set_staking_contracts(self, caller: str, token_pool: RewardPool,
                              nft_pool: RewardPool) -> None:
        self._only_deployer(caller)
        if token_pool is None or nft_pool is None:
            raise ConfigurationError("ENGINE: Invalid staking contract")
        if self.token_pool is not None or self.nft_pool is not None:
            raise ConfigurationError("ENGINE: Staking contracts already set")
        for pool in (token_pool, nft_pool):
            if pool.engine != self.address:
                raise ConfigurationError(f"ENGINE: {pool.address} has another engine")
        self.token_pool = token_pool
        self.nft_pool = nft_pool
        self.events.emit("StakingContractsSet", self.clock(),
                         token_pool=token_pool.address, nft_pool=nft_pool.address)

    def renounce_deployer_privileges(self, caller: str) -> None:
        self._only_deployer(caller)
        self.deployer_privileges_active = False
        log.info("Deployer privileges renounced")
        self.events.emit("DeployerPrivilegesRenounced", self.clock(), deployer=caller)

    def rescue_foreign_tokens(self, caller: str, token: TokenLedger, amount: int) -> int:
        self._only_deployer(caller)
        protected = {self.aec.address, self.stable.address, self.lp_token.address}
        if token.address in protected:
            raise AetherCycleError("ENGINE: Cannot rescue protocol tokens")
        amount = min(amount, token.balance_of(self.address))
        if amount <= 0:
            raise AetherCycleError("ENGINE: Nothing to rescue")
        token.transfer(self.address, caller, amount)
        self.events.emit("ForeignTokenRescued", self.clock(), token=token.address,
                         amount=amount)
        return amount

    def update_endowment_interval(self, caller: str, seconds: int) -> None:
        self._only_deployer(caller)
        self.endowment.update_release_interval(self.address, seconds)

    def set_endowment_compounding(self, caller: str, enabled: bool) -> None:
        self._only_deployer(caller)
        self.endowment.set_compounding_enabled(self.address, enabled)

    # ── views ───────────────────────────────────────────────────────

    def calculate_cycle_outcome(self) -> dict:
        """Project the split the next cycle would perform right now."""
        cfg = self.config
        tax_account = self.aec.tax_account
        pending_tax = min(self.aec.allowance(tax_account, self.address),
                          self.aec.balance_of(tax_account))
        suggestion = guarded(self.endowment.suggest_optimal_release).value
        endowment_due = 0
        if (suggestion is not None and suggestion.should_release
                and suggestion.efficiency_score >= MIN_EFFICIENCY_SCORE
                and suggestion.amount >= cfg.min_process_amount // 10):
            endowment_due = suggestion.amount
        claimable = guarded(self.lp_pool.earned, self.address).unwrap_or(0)
        balance = self._aec_balance() + pending_tax + endowment_due + claimable
        caller_reward = bps_of(pending_tax, cfg.caller_reward_bps)
        distributable = max(0, balance - caller_reward)
        burn_amount = bps_of(distributable, cfg.burn_bps)
        lp_amount = bps_of(distributable, cfg.auto_lp_bps)
        return {
            "can_process": (self.cooldown_remaining() == 0 and not self.processing_in_progress
                            and balance >= cfg.min_process_amount),
            "pending_tax": pending_tax,
            "endowment_due": endowment_due,
            "claimable_rewards": claimable,
            "total_balance": balance,
            "caller_reward": caller_reward,
            "burn": burn_amount,
            "liquidity": lp_amount,
            "refill": distributable - burn_amount - lp_amount,
        }

    def is_operational(self) -> bool:
        return (not self.processing_in_progress and self.endowment.sealed
                and self.token_pool is not None and self.nft_pool is not None)

    def health_check(self) -> dict:
        endowment = self.endowment.health_check()
        issues = []
        if not endowment["is_healthy"]:
            issues.append(f"endowment: {endowment['status']}")
        if self.token_pool is None or self.nft_pool is None:
            issues.append("staking contracts not set")
        if self.processing_in_progress:
            issues.append("processing in progress")
        return {
            "is_healthy": not issues,
            "status": "Operational" if not issues else "Degraded",
            "issues": issues,
            "cooldown_remaining": self.cooldown_remaining(),
            "aec_balance": self._aec_balance(),
            "cycles_run": self.cycles_run,
            "version": VERSION,
        }

    def get_endowment_stats(self) -> dict:
        suggestion = self.endowment.suggest_optimal_release()
        return {
            "total_received": self.total_endowment_received,
            "last_release": self.last_endowment_release,
            "reserve": self.endowment.reserve,
            "next_release_time": self.endowment.next_release_time(),
            "release_due": suggestion.should_release,
            "due_amount": suggestion.amount,
        }

    def get_config(self) -> dict:
        return {
            **self.config.to_dict(),
            "address": self.address,
            "token": self.aec.address,
            "stablecoin": self.stable.address,
            "lp_token": self.lp_token.address,
            "lp_pool": self.lp_pool.address,
            "token_pool": self.token_pool.address if self.token_pool else None,
            "nft_pool": self.nft_pool.address if self.nft_pool else None,
            "endowment": self.endowment.address,
            "version": VERSION,
        }

    def status(self) -> dict:
        return {
            "address": self.address,
            "aec_balance": self._aec_balance(),
            "stable_balance": self.stable.balance_of(self.address),
            "last_process_time": self.last_process_time,
            "cooldown_remaining": self.cooldown_remaining(),
            "processing_in_progress": self.processing_in_progress,
            "deployer_privileges_active": self.deployer_privileges_active,
            "cycles_run": self.cycles_run,
            "total_tax_collected": self.total_tax_collected,
            "total_endowment_received": self.total_endowment_received,
            "total_rewards_claimed": self.total_rewards_claimed,
            "total_other_inflows": self.total_other_inflows,
            "total_burned": self.total_burned,
            "total_lp_aec_deployed": self.total_lp_aec_deployed,
            "total_lp_tokens_minted": self.total_lp_tokens_minted,
            "total_refilled": dict(self.total_refilled),
            "total_caller_rewards": self.total_caller_rewards,
            "operational": self.is_operational(),
        }
