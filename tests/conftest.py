"""
Shared pytest fixtures for the AetherCycle test suite.
"""

import pytest

from aethercycle_core.clock import ManualClock
from aethercycle_core.config import AetherCycleConfig
from aethercycle_core.precision import aec
from aethercycle_core.protocol import build_protocol
from aethercycle_core.token import TokenLedger

TRADE_DEADLINE = 300


@pytest.fixture
def clock():
    """Manual clock starting at a fixed timestamp."""
    return ManualClock()


@pytest.fixture
def config():
    """Default protocol configuration."""
    return AetherCycleConfig()


@pytest.fixture
def protocol(config, clock):
    """A fully deployed and sealed protocol on a manual clock."""
    return build_protocol(config, clock)


@pytest.fixture
def reward_token():
    """Untaxed AEC-like reward token anyone may mint."""
    return TokenLedger("AEC")


@pytest.fixture
def sell_aec(protocol):
    """Return a helper that sells freshly minted AEC into the pair (taxed)."""

    def _sell(trader: str, amount: int) -> int:
        protocol.aec.mint(protocol.deployer, trader, amount)
        protocol.aec.approve(trader, protocol.market.address, amount)
        _, out = protocol.market.swap_exact_tokens_for_tokens(
            trader, amount, 0, [protocol.aec.address, protocol.stable.address],
            trader, protocol.clock() + TRADE_DEADLINE)
        return out

    return _sell


@pytest.fixture
def fund_engine(protocol):
    """Return a helper that sends AEC straight to the engine (untaxed)."""

    def _fund(amount: int) -> None:
        protocol.aec.mint(protocol.deployer, protocol.deployer, amount)
        protocol.aec.transfer(protocol.deployer, protocol.engine.address, amount)

    return _fund


@pytest.fixture
def taxed_protocol(protocol, sell_aec):
    """Protocol with 2,000 AEC of pending transfer tax."""
    sell_aec("trader", aec(100_000))
    return protocol
