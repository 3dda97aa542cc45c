"""
Reserve reconciliation.

The custodian reports gross balances.  The AMM may only trade with what is
left after every tracked liability is set aside:

    reserve[t] = balance[t] - (orders[t] + proceeds[t] + protocol_fees[t] + platform_fees[t])

A negative result means the custodied balance fell below what the pool owes.
That is an invariant violation and aborts the calling operation until an
operator restores the balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from ..exceptions import ErrorCode, InvariantViolation
from .uint import check_u96, check_u112, checked_sub

logger = logging.getLogger(__name__)


@dataclass
class Liabilities:
    """Per-token amounts held by the custodian that do not belong to LPs."""
    orders: List[int] = field(default_factory=lambda: [0, 0])
    proceeds: List[int] = field(default_factory=lambda: [0, 0])
    protocol_fees: List[int] = field(default_factory=lambda: [0, 0])
    platform_fees: List[int] = field(default_factory=lambda: [0, 0])

    def total(self, token: int) -> int:
        return (
            self.orders[token]
            + self.proceeds[token]
            + self.protocol_fees[token]
            + self.platform_fees[token]
        )

    # -- Order principal ----------------------------------------------------

    def add_orders(self, token: int, amount: int) -> None:
        self.orders[token] = check_u112(self.orders[token] + amount, "order liability")

    def sub_orders(self, token: int, amount: int) -> None:
        self.orders[token] = checked_sub(self.orders[token], amount, "order liability")

    # -- Proceeds -----------------------------------------------------------

    def add_proceeds(self, token: int, amount: int) -> None:
        self.proceeds[token] = check_u112(self.proceeds[token] + amount, "proceeds liability")

    def sub_proceeds(self, token: int, amount: int) -> None:
        self.proceeds[token] = checked_sub(self.proceeds[token], amount, "proceeds liability")

    # -- Fees ---------------------------------------------------------------

    def add_fees(self, token: int, protocol: int, platform: int) -> None:
        self.protocol_fees[token] = check_u96(self.protocol_fees[token] + protocol, "protocol fees")
        self.platform_fees[token] = check_u96(self.platform_fees[token] + platform, "platform fees")

    def take_protocol_fees(self) -> Tuple[int, int]:
        due = (self.protocol_fees[0], self.protocol_fees[1])
        self.protocol_fees = [0, 0]
        return due

    def take_platform_fees(self) -> Tuple[int, int]:
        due = (self.platform_fees[0], self.platform_fees[1])
        self.platform_fees = [0, 0]
        return due


def reconcile(balances: Sequence[int], liabilities: Liabilities) -> Tuple[int, int]:
    """
    Derive effective AMM reserves from custodied balances.

    Raises:
        InvariantViolation: when a balance does not cover its liabilities
    """
    reserves = []
    for token in (0, 1):
        owed = liabilities.total(token)
        reserve = balances[token] - owed
        if reserve < 0:
            logger.error(
                "Custodied balance of token%d (%d) is below liabilities (%d)",
                token, balances[token], owed,
            )
            raise InvariantViolation(
                ErrorCode.INSUFFICIENT_CUSTODIED_BALANCE,
                f"token{token} balance {balances[token]} < liabilities {owed}",
            )
        reserves.append(reserve)
    return reserves[0], reserves[1]
