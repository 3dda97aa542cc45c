"""
TWAMM Virtual-Order Engine

Time-weighted average market maker: an AMM that also accepts long-running
virtual orders selling at a constant per-block rate until expiry.

Components:
  - Order Ledger (orders, per-direction order pools, accumulator snapshots)
  - Reserve Reconciliator (custodied balance minus liabilities)
  - Virtual Order Executor (interval-stepped replay, read-only preview)
  - AMM Trade Engine (constant product, concurrent two-sided approximation)
  - Fee Splitter (protocol / LP / platform)
  - Order Lifecycle Manager (issue, extend, pause, resume, withdraw, cancel)
  - Pool (reentrancy guard, custodian callbacks, administration, queries)
  - Vault (in-memory custodian and block clock)
"""

from .amm import (
    IntervalTrade,
    compute_interval_trade,
    compute_swap_out,
    constant_product_out,
)
from .collaborators import (
    AllowList,
    Custodian,
    ShareLedger,
    StaticAllowList,
)
from .custodian import Vault
from .executor import (
    VirtualOrderExecutor,
    VirtualSnapshot,
)
from .fees import (
    FeeSplit,
    fee_from_points,
    split_fee,
)
from .lifecycle import Settlement
from .operations import (
    Callback,
    OperationType,
    PoolCallResult,
    PoolOperation,
)
from .orders import (
    Order,
    OrderDirection,
    OrderPools,
    VirtualOrders,
)
from .pool import (
    ParamType,
    TwammPool,
)
from .reserves import (
    Liabilities,
    reconcile,
)
from .state import (
    FeeConfig,
    PoolParameters,
    PoolState,
    new_pool_state,
)

__all__ = [
    "AllowList",
    "Callback",
    "Custodian",
    "FeeConfig",
    "FeeSplit",
    "IntervalTrade",
    "Liabilities",
    "OperationType",
    "Order",
    "OrderDirection",
    "OrderPools",
    "ParamType",
    "PoolCallResult",
    "PoolOperation",
    "PoolParameters",
    "PoolState",
    "Settlement",
    "ShareLedger",
    "StaticAllowList",
    "TwammPool",
    "Vault",
    "VirtualOrderExecutor",
    "VirtualOrders",
    "VirtualSnapshot",
    "compute_interval_trade",
    "compute_swap_out",
    "constant_product_out",
    "fee_from_points",
    "new_pool_state",
    "reconcile",
    "split_fee",
]
