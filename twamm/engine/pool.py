"""
TWAMM Pool

One pool per trading pair.  Every entry point is all-or-nothing: it takes
the reentrancy lock, snapshots the pool state, brings virtual orders up to
the current block, applies its effect, and restores the snapshot if
anything raises.

Entry points:
  - custodian callbacks: on_swap, on_join, on_exit
  - direct order calls:  pause_order, resume_order, execute_virtual_orders_to_block
  - administration:      set_pause, set_parameter, set_fee_shift, ...
  - read-only queries:   get_virtual_reserves, get_order_amounts, ...
"""

from __future__ import annotations

import copy
import hashlib
import logging
import math
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..constants import MAX_FEE_FP, MINIMUM_LIQUIDITY, NULL_ADDRESS
from ..exceptions import CallerError, ConfigurationError, ErrorCode
from . import lifecycle
from .amm import compute_swap_out
from .collaborators import AllowList, Custodian
from .executor import VirtualOrderExecutor, VirtualSnapshot
from .fees import split_fee, validate_fee_split_config
from .operations import Callback, OperationType, PoolCallResult, PoolOperation
from .orders import Order, OrderDirection
from .reserves import reconcile
from .state import PoolState

logger = logging.getLogger(__name__)


class ParamType(IntEnum):
    """Fee parameters an admin may change.  Values are consensus-critical."""
    SHORT_TERM_FEE_FP = 0
    PARTNER_FEE_FP = 1
    LONG_TERM_FEE_FP = 2


_PARAM_FIELDS = {
    ParamType.SHORT_TERM_FEE_FP: "short_term_fee_fp",
    ParamType.PARTNER_FEE_FP: "partner_fee_fp",
    ParamType.LONG_TERM_FEE_FP: "long_term_fee_fp",
}


class TwammPool:
    """
    TWAMM pool engine.

    Implements:
      - Short-term and partner swaps with slippage protection
      - Long-term orders (issue, extend, pause, resume, withdraw, cancel)
      - LP join / reward / exit
      - Platform and protocol fee accounting
      - Reentrancy protection with full state rollback
    """

    def __init__(
        self,
        state: PoolState,
        custodian: Custodian,
        arbitrage_list: Optional[AllowList] = None,
    ):
        self.state = state
        self.custodian = custodian
        self.arbitrage_list = arbitrage_list
        self.executor = VirtualOrderExecutor(state)
        self._locked: bool = False   # reentrancy guard

    @property
    def pool_id(self) -> str:
        return self.state.pool_id

    @property
    def is_paused(self) -> bool:
        return self.state.paused

    # -- Reentrancy guard ---------------------------------------------------

    def _acquire_lock(self) -> None:
        if self._locked:
            raise CallerError(ErrorCode.REENTRANCY, f"pool {self.pool_id} is locked")
        self._locked = True

    def _release_lock(self) -> None:
        self._locked = False

    def _guarded(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run *fn* under the lock; restore the pool state if it raises."""
        self._acquire_lock()
        snapshot = self.take_snapshot()
        try:
            return fn(*args)
        except Exception:
            self.restore_snapshot(snapshot)
            raise
        finally:
            self._release_lock()

    def take_snapshot(self) -> PoolState:
        return copy.deepcopy(self.state)

    def restore_snapshot(self, snapshot: PoolState) -> None:
        # In place, so the executor keeps pointing at the live state
        vars(self.state).clear()
        vars(self.state).update(vars(snapshot))

    # -- Helpers ------------------------------------------------------------

    def _balances(self) -> Tuple[int, int]:
        return self.custodian.get_pool_balances(self.pool_id)

    def _catch_up(self, balances: Sequence[int], block: Optional[int] = None) -> None:
        """Replay virtual orders; frozen while the pool is paused."""
        if self.state.paused:
            return
        current = self.custodian.block_number
        self.executor.execute(balances, current if block is None else block, current)

    def _require_unpaused(self) -> None:
        if self.state.paused:
            raise CallerError(ErrorCode.POOL_PAUSED, f"pool {self.pool_id} is paused")

    def _require_admin(self, sender: str) -> None:
        if sender not in self.state.admins:
            logger.warning("Pool %s: rejected admin call from %s", self.pool_id, sender)
            raise CallerError(ErrorCode.SENDER_NOT_ADMIN, f"{sender} is not an admin")

    def _check_custodian(self, caller: Any) -> None:
        if caller is not self.custodian:
            raise CallerError(ErrorCode.NON_CUSTODIAN_CALLER, "callbacks are reserved for the custodian")

    # =====================================================================
    #  Custodian callbacks
    # =====================================================================

    def on_swap(self, caller: Any, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._check_custodian(caller)
        return self._guarded(self._dispatch, Callback.SWAP, op, balances)

    def on_join(self, caller: Any, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._check_custodian(caller)
        return self._guarded(self._dispatch, Callback.JOIN, op, balances)

    def on_exit(self, caller: Any, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._check_custodian(caller)
        return self._guarded(self._dispatch, Callback.EXIT, op, balances)

    def _dispatch(self, callback: Callback, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        """Validate and route to the handler of the operation type."""
        op.validate_basic()
        if op.callback != callback:
            raise CallerError(
                ErrorCode.INVALID_OPERATION, f"{op.op_type.name} is not a {callback.name} operation"
            )
        handlers: Dict[OperationType, Callable[[PoolOperation, Sequence[int]], PoolCallResult]] = {
            OperationType.SWAP: self._op_swap,
            OperationType.PARTNER_SWAP: self._op_partner_swap,
            OperationType.LONG_TERM_SWAP: self._op_long_term_swap,
            OperationType.JOIN: self._op_join,
            OperationType.REWARD: self._op_reward,
            OperationType.EXTEND: self._op_extend,
            OperationType.EXIT: self._op_exit,
            OperationType.WITHDRAW: self._op_withdraw,
            OperationType.CANCEL: self._op_cancel,
            OperationType.FEE_WITHDRAW: self._op_fee_withdraw,
        }
        result = handlers[op.op_type](op, balances)
        if callback != Callback.SWAP:
            result.protocol_fees_due = self.state.liabilities.take_protocol_fees()
        return result

    # =====================================================================
    #  Swap handlers
    # =====================================================================

    def _op_swap(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        return self._short_term_swap(op, balances, self.state.params.short_term_fee_fp)

    def _op_partner_swap(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        if self.arbitrage_list is None or not self.arbitrage_list.is_arbitrageur(op.sender):
            raise CallerError(ErrorCode.SENDER_NOT_PARTNER, f"{op.sender} is not an arbitrage partner")
        return self._short_term_swap(op, balances, self.state.params.partner_fee_fp)

    def _short_term_swap(self, op: PoolOperation, balances: Sequence[int], fee_fp: int) -> PoolCallResult:
        self._require_unpaused()
        self._catch_up(balances)
        p = op.params
        token_in = p["token_in"]
        token_out = 1 - token_in
        amount_in = p["amount_in"]
        if amount_in == 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "swap amount must be positive")

        reserves = reconcile(balances, self.state.liabilities)
        if reserves[0] == 0 or reserves[1] == 0:
            raise CallerError(ErrorCode.INSUFFICIENT_LIQUIDITY, "pool has no liquidity")
        amount_out, fee = compute_swap_out(reserves[token_in], reserves[token_out], amount_in, fee_fp)
        if amount_out == 0 or amount_out < p.get("min_amount_out", 0):
            raise CallerError(
                ErrorCode.MINIMUM_NOT_SATISFIED,
                f"amount out {amount_out} below minimum {p.get('min_amount_out', 0)}",
            )

        fees = self.state.fees
        split = split_fee(fee, fees.protocol_fee, 0, fees.collect_protocol_fees)
        self.state.liabilities.add_fees(token_in, split.protocol, 0)

        deltas = [0, 0]
        deltas[token_in] = amount_in
        deltas[token_out] = -amount_out
        logger.debug(
            "Pool %s: swap %d token%d -> %d token%d (fee=%d)",
            self.pool_id, amount_in, token_in, amount_out, token_out, fee,
        )
        return PoolCallResult(tuple(deltas), data={"amount_out": amount_out, "fee": fee})

    def _op_long_term_swap(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._require_unpaused()
        self._catch_up(balances)
        p = op.params
        token_in = p["token_in"]
        order_id, consumed = lifecycle.issue_long_term_order(
            self.state,
            self.custodian.block_number,
            owner=op.sender,
            delegate=p.get("delegate", NULL_ADDRESS),
            direction=OrderDirection.selling(token_in),
            amount_in=p["amount_in"],
            num_intervals=p["num_intervals"],
        )
        order = self.state.orders.orders[order_id]
        deltas = [0, 0]
        deltas[token_in] = p["amount_in"]
        return PoolCallResult(tuple(deltas), data={
            "order_id": order_id,
            "consumed": consumed,
            "sales_rate": order.sales_rate,
            "expiry_block": order.expiry_block,
        })

    # =====================================================================
    #  Join handlers
    # =====================================================================

    def _op_join(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._require_unpaused()
        self._catch_up(balances)
        amount0, amount1 = op.params["amount0"], op.params["amount1"]
        if amount0 == 0 or amount1 == 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "join requires both tokens")

        shares = self.state.shares
        supply = shares.total_supply
        if supply == 0:
            minted = math.isqrt(amount0 * amount1)
            if minted <= MINIMUM_LIQUIDITY:
                raise CallerError(
                    ErrorCode.INSUFFICIENT_LIQUIDITY, f"initial join must mint more than {MINIMUM_LIQUIDITY} shares"
                )
            shares.mint(NULL_ADDRESS, MINIMUM_LIQUIDITY)
            minted -= MINIMUM_LIQUIDITY
        else:
            reserve0, reserve1 = reconcile(balances, self.state.liabilities)
            if reserve0 == 0 or reserve1 == 0:
                raise CallerError(ErrorCode.INSUFFICIENT_LIQUIDITY, "pool reserves are empty")
            minted = min(amount0 * supply // reserve0, amount1 * supply // reserve1)
            if minted == 0:
                raise CallerError(ErrorCode.ZERO_AMOUNT, "join too small to mint shares")
        if minted < op.params.get("min_shares", 0):
            raise CallerError(ErrorCode.MINIMUM_NOT_SATISFIED, f"minted {minted} shares")
        shares.mint(op.recipient, minted)
        logger.info("Pool %s: %s joined with %d/%d for %d shares", self.pool_id, op.sender, amount0, amount1, minted)
        return PoolCallResult((amount0, amount1), data={"shares": minted})

    def _op_reward(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._require_unpaused()
        self._catch_up(balances)
        amount0, amount1 = op.params["amount0"], op.params["amount1"]
        if amount0 == 0 and amount1 == 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "reward requires an amount")
        return PoolCallResult((amount0, amount1))

    def _op_extend(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        p = op.params
        taken = lifecycle.extend_order(
            self.state,
            self.custodian.block_number,
            op.sender,
            p["order_id"],
            p["amount0"],
            p["amount1"],
        )
        order = self.state.orders.orders[p["order_id"]]
        deltas = [0, 0]
        deltas[order.direction.sell_token] = taken
        return PoolCallResult(tuple(deltas), data={
            "order_id": p["order_id"],
            "expiry_block": order.expiry_block,
            "deposit": order.deposit,
        })

    # =====================================================================
    #  Exit handlers
    # =====================================================================

    def _op_exit(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._catch_up(balances)
        p = op.params
        burned = p["shares"]
        if burned == 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "exit requires shares")
        shares = self.state.shares
        supply = shares.total_supply
        reserve0, reserve1 = reconcile(balances, self.state.liabilities)
        amount0 = reserve0 * burned // supply if supply else 0
        amount1 = reserve1 * burned // supply if supply else 0
        if amount0 < p.get("min_amount0", 0) or amount1 < p.get("min_amount1", 0):
            raise CallerError(ErrorCode.MINIMUM_NOT_SATISFIED, f"exit pays {amount0}/{amount1}")
        shares.burn(op.sender, burned)
        logger.info("Pool %s: %s exited %d shares for %d/%d", self.pool_id, op.sender, burned, amount0, amount1)
        return PoolCallResult((-amount0, -amount1), data={"amounts": [amount0, amount1]})

    def _op_withdraw(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._catch_up(balances)
        settlement = lifecycle.withdraw_order(
            self.state, self.custodian.block_number, op.sender, op.recipient, op.params["order_id"],
        )
        return self._settlement_result(settlement)

    def _op_cancel(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        self._catch_up(balances)
        settlement = lifecycle.cancel_order(
            self.state, self.custodian.block_number, op.sender, op.recipient, op.params["order_id"],
        )
        return self._settlement_result(settlement)

    @staticmethod
    def _settlement_result(settlement: lifecycle.Settlement) -> PoolCallResult:
        amount0, amount1 = settlement.amounts
        return PoolCallResult((-amount0, -amount1), data={
            "order_id": settlement.order_id,
            "proceeds": settlement.proceeds,
            "refund": settlement.refund,
            "cleared": settlement.cleared,
        })

    def _op_fee_withdraw(self, op: PoolOperation, balances: Sequence[int]) -> PoolCallResult:
        fee_address = self.state.fee_address
        if fee_address == NULL_ADDRESS or op.sender != fee_address:
            raise CallerError(ErrorCode.SENDER_NOT_FEE_ADDRESS, f"{op.sender} is not the fee address")
        self._catch_up(balances)
        amount0, amount1 = self.state.liabilities.take_platform_fees()
        if amount0 == 0 and amount1 == 0:
            raise CallerError(ErrorCode.NO_FUNDS_AVAILABLE, "no platform fees accrued")
        logger.info("Pool %s: platform fees %d/%d withdrawn to %s", self.pool_id, amount0, amount1, op.recipient)
        return PoolCallResult((-amount0, -amount1), data={"amounts": [amount0, amount1]})

    # =====================================================================
    #  Direct order calls
    # =====================================================================

    def pause_order(self, sender: str, order_id: int) -> None:
        def _pause() -> None:
            self._require_unpaused()
            self._catch_up(self._balances())
            lifecycle.pause_order(self.state, sender, order_id)
        self._guarded(_pause)

    def resume_order(self, sender: str, order_id: int) -> None:
        def _resume() -> None:
            self._require_unpaused()
            self._catch_up(self._balances())
            lifecycle.resume_order(self.state, sender, order_id)
        self._guarded(_resume)

    def execute_virtual_orders_to_block(self, block: int) -> int:
        """
        Replay virtual orders up to ``min(block, current block)``.

        Lets callers bound the work of a single call when the pool has not
        been touched for many intervals.

        Returns:
            the last processed block
        """
        def _execute() -> int:
            self._catch_up(self._balances(), block)
            return self.state.orders.last_processed_block
        return self._guarded(_execute)

    # =====================================================================
    #  Administration
    # =====================================================================

    def _admin(self, sender: str, fn: Callable[[], None]) -> None:
        """Admin changes take effect from the current block on."""
        def _apply() -> None:
            self._require_admin(sender)
            self._catch_up(self._balances())
            fn()
        self._guarded(_apply)

    def set_pause(self, sender: str, paused: bool) -> None:
        def _set() -> None:
            self.state.paused = bool(paused)
            logger.info("Pool %s: %s by %s", self.pool_id, "paused" if paused else "unpaused", sender)
        self._admin(sender, _set)

    def set_parameter(self, sender: str, param: ParamType, value: int) -> None:
        def _set() -> None:
            if not 0 <= value <= MAX_FEE_FP:
                raise ConfigurationError(f"{ParamType(param).name} {value} outside [0, {MAX_FEE_FP}]")
            setattr(self.state.params, _PARAM_FIELDS[ParamType(param)], value)
            logger.info("Pool %s: %s set to %d", self.pool_id, ParamType(param).name, value)
        self._admin(sender, _set)

    def set_fee_shift(self, sender: str, fee_shift: int) -> None:
        def _set() -> None:
            validate_fee_split_config(self.state.fees.protocol_fee, fee_shift)
            self.state.fees.fee_shift = fee_shift
            logger.info("Pool %s: fee shift set to %d", self.pool_id, fee_shift)
        self._admin(sender, _set)

    def set_protocol_fee(self, sender: str, protocol_fee: int) -> None:
        def _set() -> None:
            validate_fee_split_config(protocol_fee, self.state.fees.fee_shift)
            self.state.fees.protocol_fee = protocol_fee
            logger.info("Pool %s: protocol fee set to %d", self.pool_id, protocol_fee)
        self._admin(sender, _set)

    def set_collect_protocol_fees(self, sender: str, collect: bool) -> None:
        def _set() -> None:
            self.state.fees.collect_protocol_fees = bool(collect)
        self._admin(sender, _set)

    def set_fee_address(self, sender: str, fee_address: str) -> None:
        def _set() -> None:
            self.state.fee_address = fee_address or NULL_ADDRESS
            logger.info("Pool %s: fee address set to %s", self.pool_id, self.state.fee_address)
        self._admin(sender, _set)

    def set_arbitrage_list(self, sender: str, arbitrage_list: Optional[AllowList]) -> None:
        def _set() -> None:
            self.arbitrage_list = arbitrage_list
        self._admin(sender, _set)

    def set_admin_status(self, sender: str, address: str, is_admin: bool) -> None:
        def _set() -> None:
            if is_admin:
                self.state.admins.add(address)
            else:
                self.state.admins.discard(address)
            logger.info("Pool %s: admin status of %s set to %s", self.pool_id, address, is_admin)
        self._admin(sender, _set)

    # =====================================================================
    #  Queries (read-only)
    # =====================================================================

    def get_virtual_reserves(self, block: Optional[int] = None) -> VirtualSnapshot:
        """Pool economics as of *block* (default: now) without persisting anything."""
        current = self.custodian.block_number
        target = current if block is None else block
        if self.state.paused:
            target = self.state.orders.last_processed_block
        return self.executor.replay(self._balances(), target, current)

    def get_order(self, order_id: int) -> Optional[Order]:
        order = self.state.orders.get_order(order_id)
        return copy.deepcopy(order) if order is not None else None

    def get_order_amounts(self, order_id: int, block: Optional[int] = None) -> Tuple[int, int]:
        """``(proceeds, refund)`` the order could collect as of *block*."""
        order = self.state.orders.get_order(order_id)
        if order is None or order.is_cleared:
            return 0, 0
        preview = self.take_snapshot()
        current = self.custodian.block_number
        target = current if block is None else min(block, current)
        if not preview.paused:
            VirtualOrderExecutor(preview).execute(self._balances(), target, current)
        return lifecycle.order_amounts(preview, preview.orders.orders[order_id], target)

    def get_order_ids(self, owner: str, offset: int = 0, max_results: int = 100) -> Tuple[List[int], int, int]:
        return self.state.orders.order_ids(owner, offset, max_results)

    def get_sales_rates(self) -> Tuple[int, int]:
        rates = self.state.orders.order_pools.current_sales_rate
        return rates[0], rates[1]

    def get_last_virtual_order_block(self) -> int:
        return self.state.orders.last_processed_block

    def get_protocol_fees(self) -> Tuple[int, int]:
        fees = self.state.liabilities.protocol_fees
        return fees[0], fees[1]

    def get_platform_fees(self) -> Tuple[int, int]:
        fees = self.state.liabilities.platform_fees
        return fees[0], fees[1]

    def compute_state_root(self) -> str:
        """
        Deterministic hash of the whole pool state.

        Returns:
            64-char hex string (blake2b-256)
        """
        s = self.state
        vo = s.orders
        pools = vo.order_pools
        liab = s.liabilities
        hasher = hashlib.blake2b(digest_size=32)

        hasher.update(
            (f"{s.pool_id}:{s.token0}:{s.token1}:{s.decimals0}:{s.decimals1}:{int(s.pool_type)}:"
             f"{s.paused}:{s.fee_address}:{sorted(s.admins)}").encode()
        )
        p = s.params
        hasher.update(
            (f"{p.order_block_interval}:{p.max_order_intervals}:{p.short_term_fee_fp}:"
             f"{p.partner_fee_fp}:{p.long_term_fee_fp}:{s.fees.protocol_fee}:"
             f"{s.fees.fee_shift}:{s.fees.collect_protocol_fees}").encode()
        )
        hasher.update(
            (f"{vo.last_processed_block}:{vo.next_order_id}:{pools.current_sales_rate}:"
             f"{pools.cumulative_proceeds}:{liab.orders}:{liab.proceeds}:"
             f"{liab.protocol_fees}:{liab.platform_fees}").encode()
        )
        for block in sorted(pools.sales_rate_expiring_at):
            hasher.update(f"x{block}:{pools.sales_rate_expiring_at[block]}".encode())
        for block in sorted(vo.proceeds_at_block):
            hasher.update(f"s{block}:{vo.proceeds_at_block[block]}".encode())
        for order_id in sorted(vo.orders):
            o = vo.orders[order_id]
            hasher.update(
                (f"o{order_id}:{int(o.direction)}:{o.owner}:{o.delegate}:{o.sales_rate}:"
                 f"{o.proceeds_checkpoint}:{o.start_block}:{o.expiry_block}:{o.deposit}:"
                 f"{o.proceeds}:{o.paused}").encode()
            )
        for address in sorted(s.shares.balances):
            hasher.update(f"h{address}:{s.shares.balances[address]}".encode())
        return hasher.hexdigest()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.state.to_dict()
        stats["open_orders"] = sum(1 for o in self.state.orders.orders.values() if not o.is_cleared)
        return stats
