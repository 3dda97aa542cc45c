"""
Collaborators the pool talks to but does not own the logic of.

  - AllowList:   "is this address an arbitrage partner" check for partner swaps
  - ShareLedger: LP share balances (mint / burn of proportional claims)
  - Custodian:   holder of the real balances and of the block clock
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Protocol, Tuple, runtime_checkable

from ..exceptions import CallerError, ErrorCode


class Custodian(Protocol):
    """What a pool needs from the ledger that holds its balances."""

    @property
    def block_number(self) -> int: ...

    def get_pool_balances(self, pool_id: str) -> Tuple[int, int]: ...


@runtime_checkable
class AllowList(Protocol):
    """Interface for arbitrage-partner allow lists."""

    def is_arbitrageur(self, address: str) -> bool: ...


class StaticAllowList:
    """Fixed set of partner addresses."""

    def __init__(self, addresses: Iterable[str] = ()) -> None:
        self._addresses = set(addresses)

    def add(self, address: str) -> None:
        self._addresses.add(address)

    def remove(self, address: str) -> None:
        self._addresses.discard(address)

    def is_arbitrageur(self, address: str) -> bool:
        return address in self._addresses


@dataclass
class ShareLedger:
    """LP share balances of one pool."""
    balances: Dict[str, int] = field(default_factory=dict)
    total_supply: int = 0

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def mint(self, address: str, amount: int) -> None:
        if amount <= 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "mint amount must be positive")
        self.balances[address] = self.balance_of(address) + amount
        self.total_supply += amount

    def burn(self, address: str, amount: int) -> None:
        held = self.balance_of(address)
        if amount <= 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "burn amount must be positive")
        if held < amount:
            raise CallerError(
                ErrorCode.INSUFFICIENT_BALANCE, f"{address} holds {held} shares, burning {amount}"
            )
        self.balances[address] = held - amount
        self.total_supply -= amount
