"""
Virtual Order Executor.

Replays the virtual trading that should have happened between the last
processed block and a target block, one interval boundary at a time:

  1. target = min(requested, current block); nothing to do if already there
  2. first boundary is the first interval-aligned block after the checkpoint
  3. while boundary < target: trade up to the boundary, expire the sales
     rates scheduled there, snapshot the proceeds accumulators if anything
     expired, advance
  4. trade the final partial span; if the target is aligned, expire there
     too
  5. persist rates, accumulators, liabilities and the checkpoint

``replay`` computes the result without touching the pool; ``execute`` runs
the identical computation and commits it.  A preview and a later execution
to the same block therefore produce identical numbers.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from ..exceptions import ErrorCode, InvariantViolation
from .amm import compute_interval_trade
from .fees import split_fee
from .orders import OrderDirection
from .reserves import Liabilities, reconcile
from .state import PoolState
from .uint import wrapping_add

logger = logging.getLogger(__name__)


@dataclass
class VirtualSnapshot:
    """Pool economics as of ``block`` after replaying virtual orders."""
    block: int
    reserves: List[int]
    sales_rates: List[int]
    cumulative_proceeds: List[int]
    liabilities: Liabilities
    proceeds_at_block: Dict[int, Tuple[int, int]] = field(default_factory=dict)
    expired_blocks: List[int] = field(default_factory=list)
    intervals: int = 0


class _Replay:
    """Working copy of everything an interval step mutates."""

    def __init__(self, state: PoolState, balances: Sequence[int]) -> None:
        pools = state.orders.order_pools
        self.state = state
        self.liabilities = copy.deepcopy(state.liabilities)
        self.reserves = list(reconcile(balances, state.liabilities))
        self.rates = list(pools.current_sales_rate)
        self.acc = list(pools.cumulative_proceeds)
        self.snapshots: Dict[int, Tuple[int, int]] = {}
        self.expired: List[int] = []
        self.scale = (
            state.scale(OrderDirection.ZERO_TO_ONE),
            state.scale(OrderDirection.ONE_TO_ZERO),
        )

    def trade(self, blocks: int) -> None:
        if blocks <= 0 or (self.rates[0] == 0 and self.rates[1] == 0):
            return
        fees = self.state.fees
        t = compute_interval_trade(
            self.reserves[0], self.reserves[1],
            self.rates[0], self.rates[1],
            blocks, self.state.params.long_term_fee_fp,
        )
        split0 = split_fee(t.fee0, fees.protocol_fee, fees.fee_shift, fees.collect_protocol_fees)
        split1 = split_fee(t.fee1, fees.protocol_fee, fees.fee_shift, fees.collect_protocol_fees)

        liab = self.liabilities
        liab.sub_orders(0, t.sold0)
        liab.sub_orders(1, t.sold1)
        liab.add_proceeds(0, t.out0)
        liab.add_proceeds(1, t.out1)
        liab.add_fees(0, split0.protocol, split0.platform)
        liab.add_fees(1, split1.protocol, split1.platform)

        # LP share of the fee stays in reserves
        self.reserves[0] += t.sold0 - split0.withheld - t.out0
        self.reserves[1] += t.sold1 - split1.withheld - t.out1

        if self.rates[0]:
            self.acc[0] = wrapping_add(self.acc[0], t.out1 * self.scale[0] // self.rates[0])
        if self.rates[1]:
            self.acc[1] = wrapping_add(self.acc[1], t.out0 * self.scale[1] // self.rates[1])

    def expire(self, block: int) -> None:
        expiring = self.state.orders.order_pools.expiring_at(block)
        for d in (0, 1):
            if expiring[d] > self.rates[d]:
                logger.error(
                    "Pool %s: sales rate underflow at block %d (direction %d: %d < %d)",
                    self.state.pool_id, block, d, self.rates[d], expiring[d],
                )
                raise InvariantViolation(
                    ErrorCode.UNDERFLOW,
                    f"expiring rate {expiring[d]} exceeds current rate {self.rates[d]} at block {block}",
                )
            self.rates[d] -= expiring[d]
        # Extend and resume reschedule through the expiry table, so every
        # order that can settle against a snapshot has its expiry here
        if expiring != (0, 0):
            self.expired.append(block)
            self.snapshots[block] = (self.acc[0], self.acc[1])


class VirtualOrderExecutor:
    """Steps a pool's virtual orders forward in interval-sized increments."""

    def __init__(self, state: PoolState) -> None:
        self.state = state

    def replay(
        self,
        balances: Sequence[int],
        requested_block: int,
        current_block: int,
    ) -> VirtualSnapshot:
        """Compute the pool as of ``min(requested_block, current_block)`` without persisting."""
        vo = self.state.orders
        work = _Replay(self.state, balances)
        last = vo.last_processed_block
        target = min(requested_block, current_block)

        if target <= last:
            return self._snapshot(work, last, 0)

        obi = self.state.params.order_block_interval
        boundary = last - last % obi + obi
        intervals = 0
        while boundary < target:
            work.trade(boundary - last)
            work.expire(boundary)
            last = boundary
            boundary += obi
            intervals += 1

        work.trade(target - last)
        if target % obi == 0:
            work.expire(target)
            intervals += 1

        return self._snapshot(work, target, intervals)

    def execute(
        self,
        balances: Sequence[int],
        requested_block: int,
        current_block: int,
    ) -> VirtualSnapshot:
        """Replay and commit."""
        snapshot = self.replay(balances, requested_block, current_block)
        vo = self.state.orders
        if snapshot.block == vo.last_processed_block:
            return snapshot

        pools = vo.order_pools
        pools.current_sales_rate = list(snapshot.sales_rates)
        pools.cumulative_proceeds = list(snapshot.cumulative_proceeds)
        for block in snapshot.expired_blocks:
            pools.sales_rate_expiring_at.pop(block, None)
        vo.proceeds_at_block.update(snapshot.proceeds_at_block)
        self.state.liabilities = copy.deepcopy(snapshot.liabilities)

        logger.debug(
            "Pool %s: virtual orders %d -> %d (%d boundaries, rates=%s)",
            self.state.pool_id, vo.last_processed_block, snapshot.block,
            snapshot.intervals, snapshot.sales_rates,
        )
        vo.last_processed_block = snapshot.block
        return snapshot

    @staticmethod
    def _snapshot(work: _Replay, block: int, intervals: int) -> VirtualSnapshot:
        return VirtualSnapshot(
            block=block,
            reserves=list(work.reserves),
            sales_rates=list(work.rates),
            cumulative_proceeds=list(work.acc),
            liabilities=work.liabilities,
            proceeds_at_block=dict(work.snapshots),
            expired_blocks=list(work.expired),
            intervals=intervals,
        )
