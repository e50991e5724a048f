"""
In-memory ledger collaborators for AetherCycle.

``TokenLedger`` is a fungible balance store with ERC-20 style semantics:
transfers, allowance-based pulls, a restricted mint and holder burns.
``TaxedToken`` adds the AEC transfer tax, skimmed into the token's own
account and pre-approved for the engine to pull.  ``NFTRegistry`` is the
minimal ownership map the NFT staking pool needs.

Every method either completes fully or raises :class:`LedgerError`
before touching any balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from aethercycle_core.errors import AetherCycleError, Unauthorized
from aethercycle_core.precision import BASIS_POINTS

log = logging.getLogger("aethercycle.token")

UNLIMITED_ALLOWANCE: int = 2 ** 256 - 1

MAX_TAX_BPS: int = 1_000


class LedgerError(AetherCycleError):
    """A token operation was rejected."""


class TokenLedger:
    """A fungible token keyed by string addresses."""

    def __init__(self, symbol: str, address: str | None = None,
                 minter: str | None = None, decimals: int = 18):
        self.symbol = symbol
        self.address = address or f"token:{symbol.lower()}"
        self.minter = minter
        self.decimals = decimals
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.total_supply: int = 0
        self.total_burned: int = 0

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def net_transfer_amount(self, sender: str, to: str, amount: int) -> int:
        """Amount ``to`` would actually receive from a transfer of ``amount``."""
        return amount

    def check_pull(self, spender: str, owner: str, amount: int) -> None:
        """Raise unless ``spender`` could move ``amount`` out of ``owner``."""
        if spender != owner and self.allowance(owner, spender) < amount:
            raise LedgerError(f"{self.symbol}: insufficient allowance")
        if self.balance_of(owner) < amount:
            raise LedgerError(f"{self.symbol}: insufficient balance")

    # ── mutations ───────────────────────────────────────────────────

    def mint(self, caller: str, to: str, amount: int) -> None:
        if self.minter is not None and caller != self.minter:
            raise Unauthorized(f"{self.symbol}: only minter")
        if amount <= 0:
            raise LedgerError(f"{self.symbol}: mint amount must be positive")
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise LedgerError(f"{self.symbol}: negative allowance")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        self._check_transfer(sender, to, amount)
        self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        if spender != owner and allowed < amount:
            raise LedgerError(
                f"{self.symbol}: insufficient allowance: {allowed} < {amount}")
        self._check_transfer(owner, to, amount)
        if spender != owner and allowed != UNLIMITED_ALLOWANCE:
            self.allowances[(owner, spender)] = allowed - amount
        self._move(owner, to, amount)

    def burn(self, holder: str, amount: int) -> None:
        if amount <= 0:
            raise LedgerError(f"{self.symbol}: burn amount must be positive")
        bal = self.balance_of(holder)
        if bal < amount:
            raise LedgerError(f"{self.symbol}: burn exceeds balance: {bal} < {amount}")
        self.balances[holder] = bal - amount
        self.total_supply -= amount
        self.total_burned += amount

    # ── internals ───────────────────────────────────────────────────

    def _check_transfer(self, sender: str, to: str, amount: int) -> None:
        if not to:
            raise LedgerError(f"{self.symbol}: transfer to empty address")
        if amount < 0:
            raise LedgerError(f"{self.symbol}: negative amount")
        bal = self.balance_of(sender)
        if bal < amount:
            raise LedgerError(
                f"{self.symbol}: insufficient balance: {bal} < {amount}")

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount == 0 or sender == to:
            return
        self.balances[sender] = self.balance_of(sender) - amount
        self.balances[to] = self.balance_of(to) + amount

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "address": self.address,
            "total_supply": self.total_supply,
            "total_burned": self.total_burned,
            "holders": sum(1 for b in self.balances.values() if b > 0),
        }


class TaxedToken(TokenLedger):
    """
    AEC: a token whose transfers between non-exempt accounts pay a flat
    tax into the token's own account.

    The accumulated tax is pre-approved for the engine, which pulls it
    during each cycle.
    """

    def __init__(self, symbol: str = "AEC", address: str | None = None,
                 minter: str | None = None, tax_bps: int = 200):
        super().__init__(symbol, address, minter)
        if not 0 <= tax_bps <= MAX_TAX_BPS:
            raise LedgerError(f"{symbol}: tax must be 0-{MAX_TAX_BPS} bps")
        self.tax_bps = tax_bps
        self.tax_exempt: set[str] = {self.address}
        self.total_tax_collected: int = 0
        self.engine: str | None = None

    @property
    def tax_account(self) -> str:
        return self.address

    def set_engine(self, engine: str) -> None:
        """Exempt the engine and let it pull the accumulated tax."""
        self.engine = engine
        self.tax_exempt.add(engine)
        self.allowances[(self.tax_account, engine)] = UNLIMITED_ALLOWANCE

    def set_tax_exempt(self, account: str, exempt: bool = True) -> None:
        if exempt:
            self.tax_exempt.add(account)
        else:
            self.tax_exempt.discard(account)

    def _tax_on(self, sender: str, to: str, amount: int) -> int:
        if sender in self.tax_exempt or to in self.tax_exempt:
            return 0
        return amount * self.tax_bps // BASIS_POINTS

    def net_transfer_amount(self, sender: str, to: str, amount: int) -> int:
        return amount - self._tax_on(sender, to, amount)

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount == 0 or sender == to:
            return
        tax = self._tax_on(sender, to, amount)
        self.balances[sender] = self.balance_of(sender) - amount
        self.balances[to] = self.balance_of(to) + amount - tax
        if tax:
            self.balances[self.tax_account] = self.balance_of(self.tax_account) + tax
            self.total_tax_collected += tax


@dataclass
class NFTRegistry:
    """Ownership and approvals for a non-fungible collection."""
    symbol: str = "AETH"
    address: str = "nft:aetheria"
    owners: dict[int, str] = field(default_factory=dict)
    approvals: dict[int, str] = field(default_factory=dict)
    operators: set[tuple[str, str]] = field(default_factory=set)

    def mint(self, to: str, token_id: int) -> None:
        if token_id in self.owners:
            raise LedgerError(f"{self.symbol}: token {token_id} already minted")
        self.owners[token_id] = to

    def owner_of(self, token_id: int) -> str:
        owner = self.owners.get(token_id)
        if owner is None:
            raise LedgerError(f"{self.symbol}: token {token_id} does not exist")
        return owner

    def balance_of(self, account: str) -> int:
        return sum(1 for o in self.owners.values() if o == account)

    def approve(self, owner: str, spender: str, token_id: int) -> None:
        if self.owner_of(token_id) != owner:
            raise Unauthorized(f"{self.symbol}: not owner of {token_id}")
        self.approvals[token_id] = spender

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        if approved:
            self.operators.add((owner, operator))
        else:
            self.operators.discard((owner, operator))

    def transfer_from(self, spender: str, owner: str, to: str, token_id: int) -> None:
        if self.owner_of(token_id) != owner:
            raise LedgerError(f"{self.symbol}: {owner} does not own {token_id}")
        if (spender != owner
                and self.approvals.get(token_id) != spender
                and (owner, spender) not in self.operators):
            raise Unauthorized(f"{self.symbol}: transfer of {token_id} not approved")
        self.owners[token_id] = to
        self.approvals.pop(token_id, None)
