"""
Post-operation invariant checks for AetherCycle.

  - Engine AEC is conserved: inflows == outflows + balance
  - No ledger balance goes negative; supply equals the sum of balances
  - Reward-per-share never decreases in any pool
  - Pool totals equal the sum of their positions; weighted >= principal
  - The endowment reserve never grows and its release clock never rewinds
  - The engine's eternal LP stake never shrinks

``InvariantChecker`` snapshots a protocol before an operation and
verifies it afterwards.  The conservation and pool checks are also
exposed as plain functions for use in tests and simulations.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ProtocolSnapshot:
    """Snapshot of the monotone protocol fields before an operation."""
    reward_per_share: dict[str, int] = field(default_factory=dict)
    endowment_reserve: int = 0
    endowment_last_release: int = 0
    engine_stake: int = 0


def check_engine_conservation(engine, strict: bool = True) -> tuple[bool, str]:
    """
    burned + lp_deployed + refilled + caller_paid + balance == inflows.

    Right after a cycle the equation is exact.  Between cycles unsolicited
    transfers can only raise the balance, so ``strict=False`` accepts a
    surplus.
    """
    balance = engine.aec.balance_of(engine.address)
    accounted = engine.total_inflows() - engine.total_outflows()
    if balance == accounted or (not strict and balance > accounted):
        return True, ""
    return (False,
            f"Engine conservation violated: balance {balance} != "
            f"inflows {engine.total_inflows()} - outflows {engine.total_outflows()}")


def check_pool_totals(pool) -> tuple[bool, str]:
    """total_weighted == Σ weighted and total_principal == Σ principal."""
    weighted = sum(p.weighted for p in pool.positions.values())
    principal = sum(p.principal for p in pool.positions.values())
    if weighted != pool.total_weighted:
        return (False,
                f"{pool.address}: total_weighted {pool.total_weighted} != sum {weighted}")
    if principal != pool.total_principal:
        return (False,
                f"{pool.address}: total_principal {pool.total_principal} != sum {principal}")
    for account, pos in pool.positions.items():
        if pos.weighted < pos.principal:
            return False, f"{pool.address}: {account} weighted below principal"
    return True, ""


def check_ledger(token) -> tuple[bool, str]:
    """No negative balances and supply equal to the sum of balances."""
    for account, balance in token.balances.items():
        if balance < 0:
            return False, f"{token.symbol}: negative balance on {account}: {balance}"
    held = sum(token.balances.values())
    if held != token.total_supply:
        return (False,
                f"{token.symbol}: supply {token.total_supply} != held {held}")
    return True, ""


class InvariantChecker:
    """
    Captures a snapshot of a protocol and validates invariants after an
    operation has been applied.
    """

    def __init__(self):
        self._snapshot: ProtocolSnapshot | None = None

    def capture(self, protocol) -> None:
        snap = ProtocolSnapshot(
            endowment_reserve=protocol.endowment.reserve,
            endowment_last_release=protocol.endowment.last_release_time,
        )
        for name, pool in protocol.pools.items():
            snap.reward_per_share[name] = pool.reward_per_share()
        engine_pos = protocol.lp_pool.positions.get(protocol.engine.address)
        snap.engine_stake = engine_pos.principal if engine_pos else 0
        self._snapshot = snap

    def verify(self, protocol) -> tuple[bool, str]:
        """
        Verify every invariant against the current protocol state.
        Returns (passed, error_message).
        """
        errors: list[str] = []
        checks = [
            check_engine_conservation(protocol.engine, strict=False),
            *(check_ledger(t) for t in protocol.fungible_tokens),
            *(check_pool_totals(p) for p in protocol.pools.values()),
        ]
        if self._snapshot is not None:
            checks.extend([
                self._check_reward_per_share(protocol),
                self._check_endowment_monotone(protocol),
                self._check_engine_stake(protocol),
            ])
        for ok, msg in checks:
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_reward_per_share(self, protocol) -> tuple[bool, str]:
        for name, pool in protocol.pools.items():
            before = self._snapshot.reward_per_share.get(name, 0)
            after = pool.reward_per_share()
            if after < before:
                return False, f"{name}: reward_per_share decreased {before} -> {after}"
        return True, ""

    def _check_endowment_monotone(self, protocol) -> tuple[bool, str]:
        endowment = protocol.endowment
        if endowment.reserve > self._snapshot.endowment_reserve:
            return (False,
                    f"Endowment reserve grew: {self._snapshot.endowment_reserve} "
                    f"-> {endowment.reserve}")
        if endowment.last_release_time < self._snapshot.endowment_last_release:
            return False, "Endowment release clock moved backwards"
        return True, ""

    def _check_engine_stake(self, protocol) -> tuple[bool, str]:
        pos = protocol.lp_pool.positions.get(protocol.engine.address)
        stake = pos.principal if pos else 0
        if stake < self._snapshot.engine_stake:
            return (False,
                    f"Engine eternal stake shrank: {self._snapshot.engine_stake} -> {stake}")
        return True, ""
