"""
Precision constants and helpers for AetherCycle.

All token amounts are integers in base units with 18 decimals, matching
the ERC-20 representation of AEC:

    1 AEC = 1_000_000_000_000_000_000 units

Ratios are expressed in basis points (1 bp = 0.01 %).  Reward-per-share
accumulators are scaled by ``PRECISION`` so that integer division keeps
enough resolution for small stakes.
"""

from __future__ import annotations

# Number of decimal places for AEC and LP token amounts.
AEC_DECIMALS: int = 18

# Smallest representable unit.
UNITS_PER_AEC: int = 10 ** AEC_DECIMALS

# Denominator for every *_bps value.
BASIS_POINTS: int = 10_000

# Fixed-point scale for reward-per-share and decay exponentiation.
PRECISION: int = 10 ** 18

SECONDS_PER_DAY: int = 86_400


def aec(value: int | float | str) -> int:
    """Convert a whole-AEC figure to base units.

    >>> aec(1)
    1000000000000000000
    >>> aec("0.5")
    500000000000000000
    """
    if isinstance(value, int):
        return value * UNITS_PER_AEC
    whole, _, frac = str(value).partition(".")
    frac = (frac + "0" * AEC_DECIMALS)[:AEC_DECIMALS]
    sign = -1 if whole.startswith("-") else 1
    return sign * (abs(int(whole or "0")) * UNITS_PER_AEC + int(frac or "0"))


def bps_of(amount: int, bps: int) -> int:
    """Return ``amount × bps / 10 000`` rounded down."""
    return amount * bps // BASIS_POINTS


def units_to_aec(units: int) -> float:
    """Convert base units to a float, for display only."""
    return units / UNITS_PER_AEC


def format_amount(units: int, symbol: str = "AEC") -> str:
    """Return a human-readable string with 4 decimal places."""
    return f"{units_to_aec(units):,.4f} {symbol}"
