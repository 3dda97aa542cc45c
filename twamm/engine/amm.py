"""
TWAMM trade math: atomic constant-product swaps and the per-interval
aggregate virtual trade.

Both functions are pure.  The interval trade uses the ordinary
constant-product formula when one order pool is selling, and a closed-form
first-order approximation of concurrent continuous trading when both are:

    sum0 = r0 + net0          sum1 = r1 + net1
    r0'  = r1 * sum0 // sum1  r1'  = r0 * sum1 // sum0
    out0 = sum0 - r0'         out1 = sum1 - r1'

``r0' * r1'`` equals ``r0 * r1`` only up to integer rounding.  That error is
the accepted cost of the approximation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .fees import fee_from_points


@dataclass(frozen=True)
class IntervalTrade:
    """
    Result of replaying one span of blocks.

    ``sold*`` are gross amounts sold by each order pool, ``fee*`` the long-term
    fee withheld from them.  ``out0`` is token0 bought by the ONE_TO_ZERO pool
    and ``out1`` is token1 bought by the ZERO_TO_ONE pool.
    """
    blocks: int
    sold0: int = 0
    sold1: int = 0
    fee0: int = 0
    fee1: int = 0
    out0: int = 0
    out1: int = 0

    @property
    def is_empty(self) -> bool:
        return self.sold0 == 0 and self.sold1 == 0


def constant_product_out(reserve_in: int, reserve_out: int, net_in: int) -> int:
    """``reserve_out * net_in // (reserve_in + net_in)``; zero for empty input."""
    if net_in <= 0:
        return 0
    return reserve_out * net_in // (reserve_in + net_in)


def compute_interval_trade(
    reserve0: int,
    reserve1: int,
    sales_rate0: int,
    sales_rate1: int,
    blocks: int,
    long_term_fee_fp: int,
) -> IntervalTrade:
    """
    Aggregate virtual trade for *blocks* blocks at the given sales rates.

    Args:
        reserve0, reserve1: effective AMM reserves at the start of the span
        sales_rate0: combined per-block rate selling token0
        sales_rate1: combined per-block rate selling token1
        blocks: span length
        long_term_fee_fp: fee points charged on each gross amount

    Returns:
        IntervalTrade with gross, fee and output amounts
    """
    if blocks <= 0:
        return IntervalTrade(blocks=0)

    sold0 = sales_rate0 * blocks
    sold1 = sales_rate1 * blocks
    fee0 = fee_from_points(sold0, long_term_fee_fp)
    fee1 = fee_from_points(sold1, long_term_fee_fp)
    net0 = sold0 - fee0
    net1 = sold1 - fee1

    if net0 > 0 and net1 > 0:
        sum0 = reserve0 + net0
        sum1 = reserve1 + net1
        end0 = reserve1 * sum0 // sum1
        end1 = reserve0 * sum1 // sum0
        out0 = sum0 - end0
        out1 = sum1 - end1
    elif net0 > 0:
        out0 = 0
        out1 = constant_product_out(reserve0, reserve1, net0)
    elif net1 > 0:
        out0 = constant_product_out(reserve1, reserve0, net1)
        out1 = 0
    else:
        out0 = out1 = 0

    return IntervalTrade(
        blocks=blocks,
        sold0=sold0,
        sold1=sold1,
        fee0=fee0,
        fee1=fee1,
        out0=out0,
        out1=out1,
    )


def compute_swap_out(
    reserve_in: int,
    reserve_out: int,
    amount_in: int,
    fee_fp: int,
) -> Tuple[int, int]:
    """
    Exact-in constant-product swap.

    Returns:
        (amount_out, fee) where the fee is charged on *amount_in* and rounded up
    """
    fee = fee_from_points(amount_in, fee_fp)
    return constant_product_out(reserve_in, reserve_out, amount_in - fee), fee
