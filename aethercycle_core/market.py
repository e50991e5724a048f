"""
Constant-product market for AetherCycle (Uniswap-v2 style router).

Implements x * y = k liquidity pairs with:
  - get_amounts_out: quote a swap along a path
  - swap_exact_tokens_for_tokens: swap with a minimum-output floor
  - add_liquidity: deposit at the current ratio with minimum bounds
  - remove_liquidity: burn LP tokens for the underlying pair

LP tokens are minted proportional to the liquidity provided; the first
deposit mints ``sqrt(a * b) - MINIMUM_LIQUIDITY`` and locks the rest.
Every entry point validates completely before moving any token, and
raises :class:`MarketError` on rejection.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from aethercycle_core.clock import Clock, system_clock
from aethercycle_core.errors import AetherCycleError
from aethercycle_core.precision import BASIS_POINTS
from aethercycle_core.token import TokenLedger

MAX_TRADING_FEE = 1000  # 10% in basis points
DEFAULT_TRADING_FEE = 30  # 0.3%
MINIMUM_LIQUIDITY = 1000
DEAD_ADDRESS = "0x000000000000000000000000000000000000dEaD"


class MarketError(AetherCycleError):
    """A market operation was rejected."""


class MarketAdapter(Protocol):
    """The calls the cycle engine makes against a market.  All may raise."""

    address: str

    def get_amounts_out(self, amount_in: int, path: Sequence[str]) -> list[int]:
        ...

    def swap_exact_tokens_for_tokens(self, caller: str, amount_in: int, amount_out_min: int,
                                     path: Sequence[str], to: str,
                                     deadline: int) -> list[int]:
        ...

    def add_liquidity(self, caller: str, token_a: str, token_b: str,
                      amount_a_desired: int, amount_b_desired: int,
                      amount_a_min: int, amount_b_min: int,
                      to: str, deadline: int) -> tuple[int, int, int]:
        ...


@dataclass
class LiquidityPair:
    """A single constant-product pair."""
    pair_id: str
    token0: str
    token1: str
    lp_token: TokenLedger
    reserve0: int = 0
    reserve1: int = 0
    trading_fee: int = DEFAULT_TRADING_FEE

    @property
    def address(self) -> str:
        return f"pair:{self.pair_id}"

    @property
    def invariant(self) -> int:
        """Return the constant product k = x * y."""
        return self.reserve0 * self.reserve1

    def reserves_for(self, token_in: str) -> tuple[int, int]:
        if token_in == self.token0:
            return self.reserve0, self.reserve1
        return self.reserve1, self.reserve0

    def to_dict(self) -> dict:
        return {
            "pair_id": self.pair_id,
            "address": self.address,
            "token0": self.token0,
            "token1": self.token1,
            "reserve0": self.reserve0,
            "reserve1": self.reserve1,
            "lp_token": self.lp_token.address,
            "lp_supply": self.lp_token.total_supply,
            "trading_fee": self.trading_fee,
        }


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int,
                   fee_bps: int = DEFAULT_TRADING_FEE) -> int:
    """Output of a single hop after the trading fee, rounded down."""
    if amount_in <= 0:
        raise MarketError("Insufficient input amount")
    if reserve_in <= 0 or reserve_out <= 0:
        raise MarketError("Insufficient liquidity")
    amount_in_with_fee = amount_in * (BASIS_POINTS - fee_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * BASIS_POINTS + amount_in_with_fee
    return numerator // denominator


def quote(amount_a: int, reserve_a: int, reserve_b: int) -> int:
    """Amount of B equivalent to ``amount_a`` at the current ratio."""
    if amount_a <= 0:
        raise MarketError("Insufficient amount")
    if reserve_a <= 0 or reserve_b <= 0:
        raise MarketError("Insufficient liquidity")
    return amount_a * reserve_b // reserve_a


class ConstantProductRouter:
    """Manages all pairs and routes swaps and deposits through them."""

    def __init__(self, clock: Clock = system_clock, address: str = "market:router",
                 trading_fee: int = DEFAULT_TRADING_FEE):
        if trading_fee < 0 or trading_fee > MAX_TRADING_FEE:
            raise MarketError(f"Trading fee must be 0-{MAX_TRADING_FEE} basis points")
        self.clock = clock
        self.address = address
        self.trading_fee = trading_fee
        self.tokens: dict[str, TokenLedger] = {}
        self.pairs: dict[str, LiquidityPair] = {}

    @staticmethod
    def _pair_id(token_a: str, token_b: str) -> str:
        t0, t1 = sorted((token_a, token_b))
        return hashlib.sha256(f"{t0}/{t1}".encode()).hexdigest()[:16]

    # ── registry ────────────────────────────────────────────────────

    def register_token(self, token: TokenLedger) -> None:
        self.tokens[token.address] = token

    def get_pair(self, token_a: str, token_b: str) -> LiquidityPair | None:
        return self.pairs.get(self._pair_id(token_a, token_b))

    def create_pair(self, token_a: str, token_b: str) -> LiquidityPair:
        if token_a == token_b:
            raise MarketError("Identical tokens")
        for t in (token_a, token_b):
            if t not in self.tokens:
                raise MarketError(f"Unknown token {t}")
        pid = self._pair_id(token_a, token_b)
        if pid in self.pairs:
            raise MarketError("Pair already exists")
        t0, t1 = sorted((token_a, token_b))
        lp = TokenLedger(f"LP-{pid[:8]}", address=f"lp:{pid}", minter=self.address)
        pair = LiquidityPair(pair_id=pid, token0=t0, token1=t1, lp_token=lp,
                             trading_fee=self.trading_fee)
        self.pairs[pid] = pair
        self.tokens[lp.address] = lp
        return pair

    def get_reserves(self, token_a: str, token_b: str) -> tuple[int, int]:
        pair = self._require_pair(token_a, token_b)
        if token_a == pair.token0:
            return pair.reserve0, pair.reserve1
        return pair.reserve1, pair.reserve0

    # ── quoting ─────────────────────────────────────────────────────

    def get_amounts_out(self, amount_in: int, path: Sequence[str]) -> list[int]:
        if len(path) < 2:
            raise MarketError("Invalid path")
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            pair = self._require_pair(token_in, token_out)
            r_in, r_out = pair.reserves_for(token_in)
            amounts.append(get_amount_out(amounts[-1], r_in, r_out, pair.trading_fee))
        return amounts

    # ── swaps ───────────────────────────────────────────────────────

    def swap_exact_tokens_for_tokens(self, caller: str, amount_in: int, amount_out_min: int,
                                     path: Sequence[str], to: str,
                                     deadline: int) -> list[int]:
        """
        Swap an exact input along ``path``.  Returns the per-hop amounts.
        Only single-hop paths move funds; multi-hop is quoted hop by hop.
        """
        self._check_deadline(deadline)
        if len(path) != 2:
            raise MarketError("Only direct pairs are supported")
        token_in, token_out = path
        pair = self._require_pair(token_in, token_out)
        t_in = self.tokens[token_in]
        t_out = self.tokens[token_out]

        t_in.check_pull(self.address, caller, amount_in)
        received = t_in.net_transfer_amount(caller, pair.address, amount_in)
        r_in, r_out = pair.reserves_for(token_in)
        out = get_amount_out(received, r_in, r_out, pair.trading_fee)
        if out <= 0 or out >= r_out:
            raise MarketError("Insufficient liquidity")
        if out < amount_out_min:
            raise MarketError(f"Insufficient output amount: {out} < {amount_out_min}")

        t_in.transfer_from(self.address, caller, pair.address, amount_in)
        t_out.transfer(pair.address, to, out)
        self._sync(pair)
        return [amount_in, out]

    # ── liquidity ───────────────────────────────────────────────────

    def add_liquidity(self, caller: str, token_a: str, token_b: str,
                      amount_a_desired: int, amount_b_desired: int,
                      amount_a_min: int, amount_b_min: int,
                      to: str, deadline: int) -> tuple[int, int, int]:
        """
        Deposit both assets at the pair's current ratio.
        Returns ``(amount_a_used, amount_b_used, lp_minted)``.
        """
        self._check_deadline(deadline)
        if amount_a_desired <= 0 or amount_b_desired <= 0:
            raise MarketError("Amounts must be positive")
        pair = self.get_pair(token_a, token_b) or self.create_pair(token_a, token_b)
        reserve_a, reserve_b = self.get_reserves(token_a, token_b)

        if reserve_a == 0 and reserve_b == 0:
            amount_a, amount_b = amount_a_desired, amount_b_desired
        else:
            b_optimal = quote(amount_a_desired, reserve_a, reserve_b)
            if b_optimal <= amount_b_desired:
                if b_optimal < amount_b_min:
                    raise MarketError("Insufficient B amount")
                amount_a, amount_b = amount_a_desired, b_optimal
            else:
                a_optimal = quote(amount_b_desired, reserve_b, reserve_a)
                if a_optimal > amount_a_desired or a_optimal < amount_a_min:
                    raise MarketError("Insufficient A amount")
                amount_a, amount_b = a_optimal, amount_b_desired
        if amount_a < amount_a_min or amount_b < amount_b_min:
            raise MarketError("Insufficient amounts")

        ledger_a, ledger_b = self.tokens[token_a], self.tokens[token_b]
        ledger_a.check_pull(self.address, caller, amount_a)
        ledger_b.check_pull(self.address, caller, amount_b)
        net_a = ledger_a.net_transfer_amount(caller, pair.address, amount_a)
        net_b = ledger_b.net_transfer_amount(caller, pair.address, amount_b)

        supply = pair.lp_token.total_supply
        if supply == 0:
            liquidity = math.isqrt(net_a * net_b) - MINIMUM_LIQUIDITY
        else:
            liquidity = min(net_a * supply // reserve_a, net_b * supply // reserve_b)
        if liquidity <= 0:
            raise MarketError("Insufficient liquidity minted")

        ledger_a.transfer_from(self.address, caller, pair.address, amount_a)
        ledger_b.transfer_from(self.address, caller, pair.address, amount_b)
        if supply == 0:
            pair.lp_token.mint(self.address, DEAD_ADDRESS, MINIMUM_LIQUIDITY)
        pair.lp_token.mint(self.address, to, liquidity)
        self._sync(pair)
        return amount_a, amount_b, liquidity

    def remove_liquidity(self, caller: str, token_a: str, token_b: str,
                         liquidity: int, amount_a_min: int, amount_b_min: int,
                         to: str, deadline: int) -> tuple[int, int]:
        self._check_deadline(deadline)
        pair = self._require_pair(token_a, token_b)
        if liquidity <= 0:
            raise MarketError("LP amount must be positive")
        pair.lp_token.check_pull(self.address, caller, liquidity)
        reserve_a, reserve_b = self.get_reserves(token_a, token_b)
        supply = pair.lp_token.total_supply
        amount_a = liquidity * reserve_a // supply
        amount_b = liquidity * reserve_b // supply
        if amount_a < amount_a_min or amount_b < amount_b_min:
            raise MarketError("Insufficient amounts")
        if amount_a == 0 or amount_b == 0:
            raise MarketError("Insufficient liquidity burned")

        pair.lp_token.transfer_from(self.address, caller, pair.address, liquidity)
        pair.lp_token.burn(pair.address, liquidity)
        self.tokens[token_a].transfer(pair.address, to, amount_a)
        self.tokens[token_b].transfer(pair.address, to, amount_b)
        self._sync(pair)
        return amount_a, amount_b

    # ── internals ───────────────────────────────────────────────────

    def _require_pair(self, token_a: str, token_b: str) -> LiquidityPair:
        pair = self.get_pair(token_a, token_b)
        if pair is None:
            raise MarketError("Pair not found")
        return pair

    def _check_deadline(self, deadline: int) -> None:
        if self.clock() > deadline:
            raise MarketError("Expired")

    def _sync(self, pair: LiquidityPair) -> None:
        pair.reserve0 = self.tokens[pair.token0].balance_of(pair.address)
        pair.reserve1 = self.tokens[pair.token1].balance_of(pair.address)

    def get_pairs(self) -> list[dict]:
        return [p.to_dict() for p in self.pairs.values()]
