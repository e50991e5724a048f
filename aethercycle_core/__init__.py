"""
AetherCycle - an autonomous tax-to-liquidity economic engine.

Key features:
- Permissionless cycle engine: burn, protocol-owned liquidity, staking refill
- Adaptive swap-and-pair with bounded halving retries
- Perpetual endowment with compounding 0.5 % decay releases
- Tiered staking pools with decaying base emission and bonus streaming
- Integer base-unit accounting throughout (18 decimals)
"""

__version__ = "1.0.0"
__all__ = [
    "clock",
    "precision",
    "calls",
    "events",
    "errors",
    "token",
    "market",
    "endowment",
    "staking",
    "engine",
    "invariants",
    "protocol",
    "config",
    "logging_config",
    "api",
]
