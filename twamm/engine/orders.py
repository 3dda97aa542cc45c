"""
Long-term order ledger.

Holds every virtual order by id, the two per-direction order pools (current
combined sales rate, wrapping proceeds accumulator, scheduled expirations)
and the per-boundary accumulator snapshots used to settle orders after
their expiry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from ..constants import NULL_ADDRESS
from ..exceptions import ErrorCode, InvariantViolation
from .uint import check_u112


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OrderDirection(IntEnum):
    """Trade direction of a long-term order.  Values are consensus-critical."""
    ZERO_TO_ONE = 0
    ONE_TO_ZERO = 1

    @property
    def sell_token(self) -> int:
        return int(self)

    @property
    def buy_token(self) -> int:
        return 1 - int(self)

    @classmethod
    def selling(cls, token_index: int) -> "OrderDirection":
        return cls.ZERO_TO_ONE if token_index == 0 else cls.ONE_TO_ZERO


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass
class Order:
    """A long-term virtual order."""
    direction: OrderDirection
    owner: str
    delegate: str
    sales_rate: int
    proceeds_checkpoint: int
    start_block: int
    expiry_block: int
    deposit: int = 0
    proceeds: int = 0
    paused: bool = False

    @property
    def is_cleared(self) -> bool:
        return self.owner == NULL_ADDRESS

    def is_expired(self, block: int) -> bool:
        return block >= self.expiry_block

    def may_act(self, sender: str) -> bool:
        # An unset delegate is NULL_ADDRESS, which must never match a sender
        if self.is_cleared or not sender or sender == NULL_ADDRESS:
            return False
        return sender in (self.owner, self.delegate)

    def clear(self) -> None:
        """Zero the record in place; the id is never reused."""
        self.owner = NULL_ADDRESS
        self.delegate = NULL_ADDRESS
        self.sales_rate = 0
        self.proceeds_checkpoint = 0
        self.start_block = 0
        self.expiry_block = 0
        self.deposit = 0
        self.proceeds = 0
        self.paused = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.name,
            "owner": self.owner,
            "delegate": self.delegate,
            "sales_rate": self.sales_rate,
            "proceeds_checkpoint": self.proceeds_checkpoint,
            "start_block": self.start_block,
            "expiry_block": self.expiry_block,
            "deposit": self.deposit,
            "proceeds": self.proceeds,
            "paused": self.paused,
        }


@dataclass
class OrderPools:
    """
    Aggregate state of both trade directions.

    ``current_sales_rate[d]`` always equals the sum of sales rates of the
    active, unpaused, unexpired orders of direction ``d`` as of the last
    processed block.
    """
    current_sales_rate: List[int] = field(default_factory=lambda: [0, 0])
    cumulative_proceeds: List[int] = field(default_factory=lambda: [0, 0])
    sales_rate_expiring_at: Dict[int, List[int]] = field(default_factory=dict)

    def add_sales_rate(self, direction: OrderDirection, rate: int, expiry_block: int) -> None:
        d = int(direction)
        self.current_sales_rate[d] = check_u112(
            self.current_sales_rate[d] + rate, "current sales rate"
        )
        expiring = self.sales_rate_expiring_at.setdefault(expiry_block, [0, 0])
        expiring[d] = check_u112(expiring[d] + rate, "expiring sales rate")

    def remove_sales_rate(self, direction: OrderDirection, rate: int, expiry_block: int) -> None:
        d = int(direction)
        expiring = self.sales_rate_expiring_at.get(expiry_block, [0, 0])
        if self.current_sales_rate[d] < rate or expiring[d] < rate:
            raise InvariantViolation(
                ErrorCode.UNDERFLOW,
                f"removing rate {rate} from direction {direction.name} expiring at {expiry_block}",
            )
        self.current_sales_rate[d] -= rate
        expiring[d] -= rate
        if expiring == [0, 0]:
            del self.sales_rate_expiring_at[expiry_block]
        else:
            self.sales_rate_expiring_at[expiry_block] = expiring

    def move_expiry(self, direction: OrderDirection, rate: int, old_block: int, new_block: int) -> None:
        """Reschedule *rate* from one expiry to another; the current rate is untouched."""
        d = int(direction)
        old = self.sales_rate_expiring_at.get(old_block, [0, 0])
        if old[d] < rate:
            raise InvariantViolation(
                ErrorCode.UNDERFLOW, f"no rate {rate} scheduled at block {old_block}"
            )
        old[d] -= rate
        if old == [0, 0]:
            self.sales_rate_expiring_at.pop(old_block, None)
        else:
            self.sales_rate_expiring_at[old_block] = old
        new = self.sales_rate_expiring_at.setdefault(new_block, [0, 0])
        new[d] = check_u112(new[d] + rate, "expiring sales rate")

    def expiring_at(self, block: int) -> Tuple[int, int]:
        rates = self.sales_rate_expiring_at.get(block)
        if rates is None:
            return 0, 0
        return rates[0], rates[1]


@dataclass
class VirtualOrders:
    """Top-level virtual-order ledger of one pool."""
    last_processed_block: int
    order_pools: OrderPools = field(default_factory=OrderPools)
    next_order_id: int = 0
    proceeds_at_block: Dict[int, Tuple[int, int]] = field(default_factory=dict)
    orders: Dict[int, Order] = field(default_factory=dict)
    order_ids_by_owner: Dict[str, List[int]] = field(default_factory=dict)

    def add_order(self, order: Order) -> int:
        order_id = self.next_order_id
        self.next_order_id += 1
        self.orders[order_id] = order
        self.order_ids_by_owner.setdefault(order.owner, []).append(order_id)
        return order_id

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.orders.get(order_id)

    def order_ids(self, owner: str, offset: int = 0, max_results: int = 100) -> Tuple[List[int], int, int]:
        """
        Page through the ids of orders created by *owner*.

        Cleared orders stay listed; their ids are never reused.

        Returns:
            (ids, num_results, total_results)
        """
        ids = self.order_ids_by_owner.get(owner, [])
        page = ids[offset:offset + max_results] if max_results > 0 else []
        return page, len(page), len(ids)

    def accumulator_at(self, block: int) -> Tuple[int, int]:
        """Accumulator snapshot at a processed boundary."""
        snapshot = self.proceeds_at_block.get(block)
        if snapshot is None:
            raise InvariantViolation(
                ErrorCode.UNDERFLOW, f"no proceeds snapshot at block {block}"
            )
        return snapshot
