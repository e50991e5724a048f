"""
Perpetual Endowment for AetherCycle.

A sealed AEC reserve that releases a decaying fraction to the cycle
engine on a fixed schedule, so the engine keeps running even when no
transaction tax is flowing.

Release math
────────────
Each period retains ``DECAY_FACTOR = 0.995`` of the reserve.  After ``n``
elapsed periods:

    compounding:  released = reserve × (1 − 0.995ⁿ)
    simple:       released = Σ reserve_k × 0.005   (reserve_k shrinks each step)

``0.995ⁿ`` is computed in 18-decimal fixed point by exponentiation by
squaring.  ``n`` is capped at ``MAX_PERIODS_PER_RELEASE`` so a long
dormancy is caught up over several calls instead of one.  The release
clock advances by exactly ``n × interval`` so partial periods carry over.

Lifecycle: ``Unsealed → Sealed → [release]*``.  Sealing happens once, when
the reserve holds at least the required seed amount.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, NamedTuple

from aethercycle_core.calls import guarded
from aethercycle_core.clock import Clock, system_clock
from aethercycle_core.errors import AetherCycleError, Unauthorized, require_address
from aethercycle_core.events import EventLog
from aethercycle_core.precision import BASIS_POINTS, PRECISION, SECONDS_PER_DAY, aec
from aethercycle_core.token import TokenLedger

log = logging.getLogger("aethercycle.endowment")

# ── Release parameters ──────────────────────────────────────────────────

RELEASE_RATE_BPS: int = 50  # 0.5 % per period
DECAY_FACTOR: int = PRECISION - PRECISION * RELEASE_RATE_BPS // BASIS_POINTS

MIN_RELEASE_INTERVAL: int = 1 * SECONDS_PER_DAY
MAX_RELEASE_INTERVAL: int = 90 * SECONDS_PER_DAY
DEFAULT_RELEASE_INTERVAL: int = 30 * SECONDS_PER_DAY
MAX_PERIODS_PER_RELEASE: int = 6

EMERGENCY_DELAY: int = 180 * SECONDS_PER_DAY
MIN_RELEASE_AMOUNT: int = aec(1)
INITIAL_ENDOWMENT: int = aec(311_111_111)
DEFAULT_CALL_COST: int = aec(1)

SECONDS_PER_MONTH: int = 30 * SECONDS_PER_DAY
SECONDS_PER_YEAR: int = 365 * SECONDS_PER_DAY


class EndowmentError(AetherCycleError):
    """An endowment operation was rejected."""


class ReleaseSuggestion(NamedTuple):
    should_release: bool
    amount: int
    periods_waiting: int
    efficiency_score: int


@dataclass
class ReleaseRecord:
    """One completed release."""
    timestamp: int
    amount: int
    periods: int
    remaining: int
    emergency: bool = False

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "amount": self.amount,
            "periods": self.periods,
            "remaining": self.remaining,
            "emergency": self.emergency,
        }


# ── Pure math ───────────────────────────────────────────────────────────

def fixed_pow(base: int, exponent: int) -> int:
    """``base ** exponent`` with both sides scaled by ``PRECISION``."""
    result = PRECISION
    while exponent > 0:
        if exponent & 1:
            result = result * base // PRECISION
        base = base * base // PRECISION
        exponent >>= 1
    return result


def calculate_release_amount(reserve: int, periods: int, compounding: bool = True) -> int:
    """Amount released from ``reserve`` after ``periods`` decay periods."""
    if reserve <= 0 or periods <= 0:
        return 0
    if compounding:
        retained = fixed_pow(DECAY_FACTOR, periods)
        return reserve * (PRECISION - retained) // PRECISION
    released = 0
    remaining = reserve
    for _ in range(periods):
        step = remaining * RELEASE_RATE_BPS // BASIS_POINTS
        released += step
        remaining -= step
    return released


# ── Endowment ───────────────────────────────────────────────────────────

class PerpetualEndowment:
    """
    Holds the reserve and executes scheduled releases to the engine.

    ``engine`` and ``custodian`` are account addresses.  The engine object
    itself is attached later with :meth:`attach_engine` so it can be
    notified after each release.
    """

    def __init__(self, token: TokenLedger, engine: str, custodian: str,
                 initial_amount: int = INITIAL_ENDOWMENT,
                 release_interval: int = DEFAULT_RELEASE_INTERVAL,
                 clock: Clock = system_clock, address: str = "endowment",
                 estimated_call_cost: int = DEFAULT_CALL_COST):
        self.token = token
        self.engine = require_address(engine, "ENDOW: Invalid engine")
        self.custodian = require_address(custodian, "ENDOW: Invalid custodian")
        if initial_amount <= 0:
            raise EndowmentError("ENDOW: Invalid amount")
        if not MIN_RELEASE_INTERVAL <= release_interval <= MAX_RELEASE_INTERVAL:
            raise EndowmentError("ENDOW: Invalid interval")
        if estimated_call_cost <= 0:
            raise EndowmentError("ENDOW: Invalid call cost")
        self.initial_amount = initial_amount
        self.release_interval = release_interval
        self.clock = clock
        self.address = address
        self.estimated_call_cost = estimated_call_cost

        self.sealed: bool = False
        self.compounding_enabled: bool = True
        self.last_release_time: int = 0
        self.total_released: int = 0
        self.release_count: int = 0
        self.history: list[ReleaseRecord] = []
        self.events = EventLog(address, log)
        self._engine_hook: Callable[[str, int], object] | None = None

    def attach_engine(self, engine) -> None:
        if engine.address != self.engine:
            raise Unauthorized("ENDOW: Engine address mismatch")
        self._engine_hook = engine.notify_endowment_release

    # ── queries ─────────────────────────────────────────────────────

    @property
    def reserve(self) -> int:
        return self.token.balance_of(self.address)

    def periods_elapsed(self) -> int:
        if not self.sealed:
            return 0
        elapsed = max(0, self.clock() - self.last_release_time)
        return min(elapsed // self.release_interval, MAX_PERIODS_PER_RELEASE)

    def next_release_time(self) -> int:
        return self.last_release_time + self.release_interval

    def suggest_optimal_release(self) -> ReleaseSuggestion:
        periods = self.periods_elapsed()
        amount = calculate_release_amount(self.reserve, periods, self.compounding_enabled)
        if amount <= MIN_RELEASE_AMOUNT:
            return ReleaseSuggestion(False, 0, periods, 0)
        return ReleaseSuggestion(True, amount, periods, amount // self.estimated_call_cost)

    # ── lifecycle ───────────────────────────────────────────────────

    def initialize(self, caller: str) -> None:
        """Seal the endowment once the seed amount has been deposited."""
        if self.sealed:
            raise EndowmentError("ENDOW: Already sealed")
        if self.reserve < self.initial_amount:
            raise EndowmentError("ENDOW: Insufficient balance")
        self.sealed = True
        self.last_release_time = self.clock()
        log.info(f"Endowment sealed by {caller} with {self.reserve} units")
        self.events.emit("EndowmentInitialized", self.clock(),
                         amount=self.reserve, caller=caller)

    def release_funds(self, caller: str) -> int:
        """Release every due period to the engine and return the amount."""
        if caller != self.engine:
            raise Unauthorized("ENDOW: Not engine")
        if not self.sealed:
            raise EndowmentError("ENDOW: Not sealed")
        periods = self.periods_elapsed()
        if periods == 0:
            raise EndowmentError("ENDOW: No release due")
        reserve = self.reserve
        amount = calculate_release_amount(reserve, periods, self.compounding_enabled)
        if amount <= MIN_RELEASE_AMOUNT:
            raise EndowmentError("ENDOW: Release too small")
        if amount > reserve:
            raise EndowmentError("ENDOW: Insufficient reserve")

        now = self.clock()
        self.last_release_time += periods * self.release_interval
        self.total_released += amount
        self.release_count += 1
        self.history.append(ReleaseRecord(now, amount, periods, reserve - amount))
        self.token.transfer(self.address, self.engine, amount)

        log.info(f"Released {amount} units over {periods} period(s), "
                 f"{reserve - amount} remaining")
        self.events.emit("FundsReleased", now, amount=amount, periods=periods,
                         remaining=reserve - amount)

        if self._engine_hook is not None:
            result = guarded(self._engine_hook, self.address, amount)
            if not result.ok:
                self.events.emit("EngineNotificationFailed", now, error=result.error)
        return amount

    # ── engine-only tuning ──────────────────────────────────────────

    def update_release_interval(self, caller: str, seconds: int) -> None:
        if caller != self.engine:
            raise Unauthorized("ENDOW: Not engine")
        if seconds < MIN_RELEASE_INTERVAL:
            raise EndowmentError("ENDOW: Below minimum")
        if seconds > MAX_RELEASE_INTERVAL:
            raise EndowmentError("ENDOW: Above maximum")
        old = self.release_interval
        self.release_interval = seconds
        self.events.emit("ReleaseIntervalUpdated", self.clock(), old=old, new=seconds)

    def set_compounding_enabled(self, caller: str, enabled: bool) -> None:
        if caller != self.engine:
            raise Unauthorized("ENDOW: Not engine")
        self.compounding_enabled = bool(enabled)
        self.events.emit("CompoundingEnabled", self.clock(), enabled=self.compounding_enabled)

    # ── emergency ───────────────────────────────────────────────────

    def emergency_release(self, caller: str) -> int:
        """
        Flat single-period release to the custodian, available only after
        the engine has failed to pull for ``EMERGENCY_DELAY``.
        """
        if caller != self.custodian:
            raise Unauthorized("ENDOW: Not emergency custodian")
        if not self.sealed:
            raise EndowmentError("ENDOW: Not sealed")
        now = self.clock()
        if now < self.last_release_time + EMERGENCY_DELAY:
            raise EndowmentError("ENDOW: Emergency delay not met")
        reserve = self.reserve
        amount = reserve * RELEASE_RATE_BPS // BASIS_POINTS
        if amount == 0:
            raise EndowmentError("ENDOW: Nothing to release")

        self.last_release_time = now
        self.total_released += amount
        self.release_count += 1
        self.history.append(ReleaseRecord(now, amount, 1, reserve - amount, emergency=True))
        self.token.transfer(self.address, self.custodian, amount)
        log.warning(f"Emergency release of {amount} units to {self.custodian}")
        self.events.emit("EmergencyRelease", now, amount=amount, to=self.custodian)
        return amount

    # ── analytics ───────────────────────────────────────────────────

    def get_endowment_status(self) -> dict:
        now = self.clock()
        reserve = self.reserve
        return {
            "sealed": self.sealed,
            "current_balance": reserve,
            "total_released": self.total_released,
            "release_count": self.release_count,
            "remaining_bps": reserve * BASIS_POINTS // self.initial_amount,
            "release_interval": self.release_interval,
            "compounding_enabled": self.compounding_enabled,
            "last_release_time": self.last_release_time,
            "next_release_time": self.next_release_time(),
            "time_until_next_release": max(0, self.next_release_time() - now),
        }

    def project_future_balance(self, months: int) -> int:
        """Reserve expected after ``months`` with no emergency releases."""
        if months < 0:
            raise EndowmentError("ENDOW: Invalid months")
        periods = months * SECONDS_PER_MONTH // self.release_interval
        reserve = self.reserve
        return reserve - calculate_release_amount(reserve, periods, self.compounding_enabled)

    def get_release_history(self, offset: int = 0, limit: int = 10) -> list[dict]:
        if offset < 0 or limit < 0:
            raise EndowmentError("ENDOW: Invalid range")
        return [r.to_dict() for r in self.history[offset:offset + limit]]

    def calculate_apr(self) -> int:
        """Share of the reserve released per year, in basis points."""
        periods = SECONDS_PER_YEAR // self.release_interval
        return BASIS_POINTS - fixed_pow(DECAY_FACTOR, periods) * BASIS_POINTS // PRECISION

    def verify_mathematical_sustainability(self, years: int) -> dict:
        projected = self.project_future_balance(years * 12)
        return {
            "sustainable": projected > 0,
            "projected_balance": projected,
            "remaining_bps": projected * BASIS_POINTS // max(1, self.reserve),
            "years": years,
        }

    def health_check(self) -> dict:
        now = self.clock()
        if not self.sealed:
            status = "Not sealed"
        elif self.reserve == 0:
            status = "Depleted"
        elif now >= self.last_release_time + EMERGENCY_DELAY:
            status = "Stalled"
        else:
            status = "Operational"
        return {
            "is_healthy": status == "Operational",
            "status": status,
            "reserve": self.reserve,
            "periods_due": self.periods_elapsed(),
        }
