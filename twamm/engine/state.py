"""
Pool state aggregate.

One PoolState per trading pair holds everything the engine mutates: the
virtual-order ledger, liability counters, LP shares, fee configuration and
administrative flags.  The pool snapshots and restores it wholesale, so no
other object holds pool economics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from ..constants import (
    MAX_FEE_FP,
    MAX_TOKEN_DECIMALS,
    MIN_TOKEN_DECIMALS,
    NULL_ADDRESS,
    POOL_TYPE_PARAMETERS,
    PoolType,
)
from ..exceptions import ConfigurationError, ErrorCode
from .collaborators import ShareLedger
from .fees import validate_fee_split_config
from .orders import OrderDirection, VirtualOrders
from .reserves import Liabilities


@dataclass
class PoolParameters:
    """Interval length, order length cap and fee points of a pool."""
    order_block_interval: int
    max_order_intervals: int
    short_term_fee_fp: int
    partner_fee_fp: int
    long_term_fee_fp: int

    @classmethod
    def for_type(cls, pool_type: PoolType) -> "PoolParameters":
        try:
            preset = POOL_TYPE_PARAMETERS[PoolType(pool_type)]
        except (KeyError, ValueError):
            raise ConfigurationError(
                f"unknown pool type {pool_type!r}", ErrorCode.INVALID_POOL_TYPE
            ) from None
        return cls(*preset)

    def validate(self) -> None:
        if self.order_block_interval <= 0:
            raise ConfigurationError("order block interval must be positive")
        if self.max_order_intervals <= 0:
            raise ConfigurationError("max order intervals must be positive")
        for name in ("short_term_fee_fp", "partner_fee_fp", "long_term_fee_fp"):
            value = getattr(self, name)
            if not 0 <= value <= MAX_FEE_FP:
                raise ConfigurationError(f"{name} {value} outside [0, {MAX_FEE_FP}]")


@dataclass
class FeeConfig:
    """Protocol fee fraction (18-decimal), platform fee shift and collection flag."""
    protocol_fee: int = 0
    fee_shift: int = 0
    collect_protocol_fees: bool = False

    def validate(self) -> None:
        validate_fee_split_config(self.protocol_fee, self.fee_shift)


@dataclass
class PoolState:
    """State of a TWAMM pool.  token0 < token1 (canonical ordering)."""
    pool_id: str
    token0: str
    token1: str
    decimals0: int
    decimals1: int
    pool_type: PoolType
    params: PoolParameters
    orders: VirtualOrders
    fees: FeeConfig = field(default_factory=FeeConfig)
    liabilities: Liabilities = field(default_factory=Liabilities)
    shares: ShareLedger = field(default_factory=ShareLedger)
    paused: bool = False
    admins: Set[str] = field(default_factory=set)
    fee_address: str = NULL_ADDRESS

    @property
    def tokens(self):
        return self.token0, self.token1

    def scale(self, direction: OrderDirection) -> int:
        """Proceeds accumulator scaling factor: 10**(sell-token decimals + 1)."""
        decimals = self.decimals0 if direction == OrderDirection.ZERO_TO_ONE else self.decimals1
        return 10 ** (decimals + 1)

    def to_dict(self) -> Dict[str, Any]:
        """Diagnostic view; NOT a persistence format."""
        vo = self.orders
        return {
            "pool_id": self.pool_id,
            "tokens": [self.token0, self.token1],
            "decimals": [self.decimals0, self.decimals1],
            "pool_type": PoolType(self.pool_type).name,
            "paused": self.paused,
            "last_processed_block": vo.last_processed_block,
            "next_order_id": vo.next_order_id,
            "sales_rates": list(vo.order_pools.current_sales_rate),
            "cumulative_proceeds": list(vo.order_pools.cumulative_proceeds),
            "liabilities": {
                "orders": list(self.liabilities.orders),
                "proceeds": list(self.liabilities.proceeds),
                "protocol_fees": list(self.liabilities.protocol_fees),
                "platform_fees": list(self.liabilities.platform_fees),
            },
            "total_shares": self.shares.total_supply,
        }


def new_pool_state(
    pool_id: str,
    token0: str,
    token1: str,
    decimals0: int,
    decimals1: int,
    pool_type: PoolType,
    admin: str,
    block: int,
    fees: Optional[FeeConfig] = None,
) -> PoolState:
    """
    Build and validate the state of a new pool.

    Raises:
        ConfigurationError: unsupported decimals, unknown pool type or bad fees
    """
    for decimals in (decimals0, decimals1):
        if not MIN_TOKEN_DECIMALS <= decimals <= MAX_TOKEN_DECIMALS:
            raise ConfigurationError(
                f"token decimals {decimals} outside [{MIN_TOKEN_DECIMALS}, {MAX_TOKEN_DECIMALS}]",
                ErrorCode.UNSUPPORTED_TOKEN_DECIMALS,
            )
    params = PoolParameters.for_type(pool_type)
    fee_config = fees if fees is not None else FeeConfig()
    fee_config.validate()
    return PoolState(
        pool_id=pool_id,
        token0=token0,
        token1=token1,
        decimals0=decimals0,
        decimals1=decimals1,
        pool_type=PoolType(pool_type),
        params=params,
        orders=VirtualOrders(last_processed_block=block),
        fees=fee_config,
        admins={admin},
    )
