"""
Order Lifecycle Manager.

Creation, extension, pause, resume, withdrawal and cancellation of
long-term orders.  Callers bring the executor up to date first (extension
excepted, see ``extend_order``); every function here judges expiry and
settles proceeds against ``last_processed_block``.  The one exception is a
paused order in a paused pool: the executor is frozen, and the order no
longer reads the accumulator, so its expiry is judged against the current
block.

Authorization: the owner or the delegate may act on an order.  Funds are
paid to a caller-chosen recipient only when the owner acts; a delegate must
pay the owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from ..constants import NULL_ADDRESS
from ..exceptions import CallerError, ErrorCode
from .orders import Order, OrderDirection
from .state import PoolState
from .uint import check_u112, checked_sub, wrapping_sub

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    """Amounts released by a withdrawal or cancellation."""
    order_id: int
    direction: OrderDirection
    refund: int
    proceeds: int
    cleared: bool

    @property
    def amounts(self) -> Tuple[int, int]:
        """Payout per token index."""
        out = [0, 0]
        out[self.direction.sell_token] += self.refund
        out[self.direction.buy_token] += self.proceeds
        return out[0], out[1]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _lookup(state: PoolState, order_id: int, sender: str, recipient: Optional[str] = None) -> Order:
    order = state.orders.get_order(order_id)
    if order is None or order.is_cleared:
        raise CallerError(
            ErrorCode.SENDER_NOT_ORDER_OWNER_OR_DELEGATE, f"order {order_id} does not exist"
        )
    if recipient is not None and sender != order.owner and recipient != order.owner:
        raise CallerError(
            ErrorCode.RECIPIENT_NOT_OWNER, f"order {order_id} pays only its owner when a delegate acts"
        )
    if not order.may_act(sender):
        raise CallerError(
            ErrorCode.SENDER_NOT_ORDER_OWNER_OR_DELEGATE, f"{sender} may not act on order {order_id}"
        )
    return order


def _accrued(state: PoolState, order: Order, accumulator: int) -> int:
    """Proceeds earned since the order's checkpoint; wrap-safe."""
    distance = wrapping_sub(accumulator, order.proceeds_checkpoint)
    return distance * order.sales_rate // state.scale(order.direction)


def _current_accumulator(state: PoolState, order: Order) -> int:
    return state.orders.order_pools.cumulative_proceeds[int(order.direction)]


def _settlement_accumulator(state: PoolState, order: Order) -> int:
    """Accumulator at expiry for processed expiries, otherwise the live value."""
    if order.expiry_block <= state.orders.last_processed_block:
        return state.orders.accumulator_at(order.expiry_block)[int(order.direction)]
    return _current_accumulator(state, order)


def _settles_expired(state: PoolState, order: Order, block: int) -> bool:
    if order.expiry_block <= state.orders.last_processed_block:
        return True
    return state.paused and order.paused and order.is_expired(block)


def order_amounts(state: PoolState, order: Order, block: int) -> Tuple[int, int]:
    """
    What the order could withdraw at *block*, as ``(proceeds, refund)``.

    The refund is the deposit still owed if the order were cancelled, or the
    stored deposit once it has expired.
    """
    last = state.orders.last_processed_block
    expired = _settles_expired(state, order, block)
    proceeds = order.proceeds
    if not order.paused:
        proceeds += _accrued(state, order, _settlement_accumulator(state, order))
    refund = order.deposit
    if not expired and not order.paused:
        refund += order.sales_rate * (order.expiry_block - last)
    return proceeds, refund


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------

def issue_long_term_order(
    state: PoolState,
    block: int,
    owner: str,
    delegate: str,
    direction: OrderDirection,
    amount_in: int,
    num_intervals: int,
) -> Tuple[int, int]:
    """
    Create a long-term order selling *amount_in* over *num_intervals* intervals.

    The current block is rounded down to the last interval boundary and
    ``num_intervals + 1`` intervals are added, so the order always runs for
    at least *num_intervals* whole intervals.  The sales rate truncates; the
    remainder is not refunded and becomes part of the reserves.

    Returns:
        (order_id, consumed) where consumed = sales_rate * trade_blocks
    """
    params = state.params
    if owner == NULL_ADDRESS or not owner:
        raise CallerError(ErrorCode.INVALID_ADDRESS, "order owner must be set")
    if amount_in <= 0:
        raise CallerError(ErrorCode.ZERO_AMOUNT, "order amount must be positive")
    if num_intervals < 0 or num_intervals > params.max_order_intervals:
        raise CallerError(
            ErrorCode.MAX_ORDER_LENGTH_EXCEEDED,
            f"{num_intervals} intervals (max {params.max_order_intervals})",
        )

    obi = params.order_block_interval
    last_expiry = block - block % obi
    expiry = last_expiry + obi * (num_intervals + 1)
    trade_blocks = expiry - block
    sales_rate = amount_in // trade_blocks
    if sales_rate == 0:
        raise CallerError(
            ErrorCode.ZERO_SALES_RATE, f"{amount_in} over {trade_blocks} blocks"
        )
    check_u112(sales_rate, "sales rate")
    consumed = sales_rate * trade_blocks

    vo = state.orders
    d = OrderDirection(direction)
    vo.order_pools.add_sales_rate(d, sales_rate, expiry)
    state.liabilities.add_orders(d.sell_token, consumed)
    order_id = vo.add_order(Order(
        direction=d,
        owner=owner,
        delegate=delegate or NULL_ADDRESS,
        sales_rate=sales_rate,
        proceeds_checkpoint=vo.order_pools.cumulative_proceeds[int(d)],
        start_block=block,
        expiry_block=expiry,
    ))
    logger.info(
        "Pool %s: order %d issued by %s (%s, rate=%d, blocks %d..%d)",
        state.pool_id, order_id, owner, d.name, sales_rate, block, expiry,
    )
    return order_id, consumed


# ---------------------------------------------------------------------------
# Extend
# ---------------------------------------------------------------------------

def extend_order(
    state: PoolState,
    block: int,
    sender: str,
    order_id: int,
    amount0: int,
    amount1: int,
) -> int:
    """
    Push an order's expiry out by the whole intervals the extra funds buy.

    Extension reads the ledger as of the last catch-up and does not replay
    virtual orders first.  Only the expiry table entry of this order moves,
    and the old expiry is still in the future, so the executor's schedule
    stays consistent.

    Returns:
        the amount of sell token taken from the sender
    """
    order = _lookup(state, order_id, sender)
    d = order.direction
    supplied = (amount0, amount1)
    extra = supplied[d.sell_token]
    if supplied[d.buy_token] != 0:
        raise CallerError(
            ErrorCode.INCORRECT_EXTEND_TOKEN, f"order {order_id} sells token{d.sell_token}"
        )
    if state.paused:
        raise CallerError(ErrorCode.POOL_PAUSED, "pool is paused")
    if order.is_expired(block) or order.expiry_block <= state.orders.last_processed_block:
        raise CallerError(ErrorCode.ORDER_EXPIRED, f"order {order_id} expired at {order.expiry_block}")
    if order.paused:
        raise CallerError(ErrorCode.ORDER_PAUSED, f"order {order_id} is paused")

    params = state.params
    obi = params.order_block_interval
    total = extra + order.deposit
    reach = order.expiry_block + total // order.sales_rate
    new_expiry = reach - reach % obi
    gained = new_expiry - order.expiry_block
    if gained < obi:
        raise CallerError(
            ErrorCode.INSUFFICIENT_EXTEND_FUNDS,
            f"{total} buys {total // order.sales_rate} blocks, less than one interval",
        )
    max_expiry = order.start_block - order.start_block % obi + obi * (params.max_order_intervals + 1)
    if new_expiry > max_expiry:
        raise CallerError(
            ErrorCode.MAX_ORDER_LENGTH_EXCEEDED, f"expiry {new_expiry} beyond {max_expiry}"
        )

    state.orders.order_pools.move_expiry(d, order.sales_rate, order.expiry_block, new_expiry)
    state.liabilities.add_orders(d.sell_token, extra)
    order.deposit = check_u112(total - gained * order.sales_rate, "order deposit")
    logger.info(
        "Pool %s: order %d extended %d -> %d (deposit=%d)",
        state.pool_id, order_id, order.expiry_block, new_expiry, order.deposit,
    )
    order.expiry_block = new_expiry
    return extra


# ---------------------------------------------------------------------------
# Pause / resume
# ---------------------------------------------------------------------------

def pause_order(state: PoolState, sender: str, order_id: int) -> None:
    """Stop an order selling; its proceeds and unsold deposit are stored on the order."""
    order = _lookup(state, order_id, sender)
    last = state.orders.last_processed_block
    if order.paused:
        raise CallerError(ErrorCode.ORDER_PAUSED, f"order {order_id} is already paused")
    if order.expiry_block <= last:
        raise CallerError(ErrorCode.ORDER_EXPIRED, f"order {order_id} expired at {order.expiry_block}")

    accumulator = _current_accumulator(state, order)
    order.proceeds = check_u112(order.proceeds + _accrued(state, order, accumulator), "order proceeds")
    order.deposit = check_u112(
        order.deposit + order.sales_rate * (order.expiry_block - last), "order deposit"
    )
    order.proceeds_checkpoint = accumulator
    state.orders.order_pools.remove_sales_rate(order.direction, order.sales_rate, order.expiry_block)
    order.paused = True
    logger.info("Pool %s: order %d paused at block %d", state.pool_id, order_id, last)


def resume_order(state: PoolState, sender: str, order_id: int) -> None:
    """Restart a paused order at its original sales rate and expiry."""
    order = _lookup(state, order_id, sender)
    last = state.orders.last_processed_block
    if order.expiry_block <= last:
        raise CallerError(ErrorCode.ORDER_EXPIRED, f"order {order_id} expired at {order.expiry_block}")
    if not order.paused:
        raise CallerError(ErrorCode.ORDER_NOT_PAUSED, f"order {order_id} is not paused")

    owed = order.sales_rate * (order.expiry_block - last)
    order.deposit = checked_sub(order.deposit, owed, "order deposit")
    order.proceeds_checkpoint = _current_accumulator(state, order)
    state.orders.order_pools.add_sales_rate(order.direction, order.sales_rate, order.expiry_block)
    order.paused = False
    logger.info("Pool %s: order %d resumed at block %d", state.pool_id, order_id, last)


# ---------------------------------------------------------------------------
# Withdraw / cancel
# ---------------------------------------------------------------------------

def withdraw_order(state: PoolState, block: int, sender: str, recipient: str, order_id: int) -> Settlement:
    """
    Pay out accrued proceeds.  At or after expiry also pay the stored deposit
    and clear the order; before expiry the order keeps running.
    """
    order = _lookup(state, order_id, sender, recipient)
    d = order.direction
    expired = _settles_expired(state, order, block)

    proceeds = order.proceeds
    if not order.paused:
        proceeds += _accrued(state, order, _settlement_accumulator(state, order))
    refund = order.deposit if expired else 0
    if proceeds == 0 and refund == 0:
        raise CallerError(ErrorCode.NO_FUNDS_AVAILABLE, f"order {order_id} has nothing to withdraw")

    state.liabilities.sub_proceeds(d.buy_token, proceeds)
    state.liabilities.sub_orders(d.sell_token, refund)
    if expired:
        order.clear()
    else:
        order.proceeds = 0
        if not order.paused:
            order.proceeds_checkpoint = _current_accumulator(state, order)

    logger.info(
        "Pool %s: order %d withdrawn to %s (proceeds=%d, refund=%d%s)",
        state.pool_id, order_id, recipient, proceeds, refund, ", cleared" if expired else "",
    )
    return Settlement(order_id, d, refund=refund, proceeds=proceeds, cleared=expired)


def cancel_order(state: PoolState, block: int, sender: str, recipient: str, order_id: int) -> Settlement:
    """Stop an unexpired order, refund its unsold deposit, pay its proceeds and clear it."""
    order = _lookup(state, order_id, sender, recipient)
    d = order.direction
    last = state.orders.last_processed_block
    if _settles_expired(state, order, block):
        raise CallerError(
            ErrorCode.CANT_CANCEL_COMPLETED_ORDER, f"order {order_id} expired at {order.expiry_block}"
        )

    proceeds = order.proceeds
    refund = order.deposit
    if not order.paused:
        proceeds += _accrued(state, order, _current_accumulator(state, order))
        refund += order.sales_rate * (order.expiry_block - last)
    if proceeds == 0 and refund == 0:
        raise CallerError(ErrorCode.NO_FUNDS_AVAILABLE, f"order {order_id} has nothing to cancel")

    if not order.paused:
        state.orders.order_pools.remove_sales_rate(d, order.sales_rate, order.expiry_block)
    state.liabilities.sub_proceeds(d.buy_token, proceeds)
    state.liabilities.sub_orders(d.sell_token, refund)
    order.clear()

    logger.info(
        "Pool %s: order %d cancelled to %s (proceeds=%d, refund=%d)",
        state.pool_id, order_id, recipient, proceeds, refund,
    )
    return Settlement(order_id, d, refund=refund, proceeds=proceeds, cleared=True)
