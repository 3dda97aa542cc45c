"""
In-memory custodian.

The Vault holds every real token balance (accounts and pools), owns the
block clock, and is the only caller allowed into pool callbacks.  A call is
all-or-nothing on this side too: the sender's funds are checked before the
pool runs, and transfers are applied only after the pool returns, so a
failing pool leaves every balance untouched.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Optional, Tuple

from ..constants import PoolType
from ..exceptions import CallerError, ErrorCode, InvariantViolation
from .collaborators import AllowList
from .operations import Callback, PoolCallResult, PoolOperation
from .pool import TwammPool
from .state import FeeConfig, new_pool_state

logger = logging.getLogger(__name__)


class Vault:
    """
    Custodian of all pool balances.

    Handles:
      - Account and pool token balances
      - Deterministic pool creation and lookup
      - Routing swap / join / exit calls into pools and settling their deltas
      - Protocol fee collection
    """

    def __init__(self, block_number: int = 1, protocol_fee_collector: str = "protocol-fee-collector") -> None:
        self._block_number = block_number
        self.protocol_fee_collector = protocol_fee_collector
        self._accounts: Dict[str, Dict[str, int]] = {}
        self._pool_balances: Dict[str, List[int]] = {}
        self._pools: Dict[str, TwammPool] = {}
        self._pool_sequence: int = 0  # deterministic ID counter

    # -- Block clock --------------------------------------------------------

    @property
    def block_number(self) -> int:
        return self._block_number

    def mine(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("cannot mine a negative number of blocks")
        self._block_number += blocks
        return self._block_number

    def mine_to(self, block: int) -> int:
        return self.mine(max(0, block - self._block_number))

    # -- Accounts -----------------------------------------------------------

    def balance_of(self, address: str, token: str) -> int:
        return self._accounts.get(address, {}).get(token, 0)

    def credit(self, address: str, token: str, amount: int) -> None:
        """Mint *amount* of *token* to *address* (test faucet / operator funding)."""
        if amount < 0:
            raise ValueError("credit amount must be non-negative")
        account = self._accounts.setdefault(address, {})
        account[token] = account.get(token, 0) + amount

    def _debit(self, address: str, token: str, amount: int) -> None:
        held = self.balance_of(address, token)
        if held < amount:
            raise CallerError(
                ErrorCode.INSUFFICIENT_BALANCE, f"{address} holds {held} {token}, needs {amount}"
            )
        self._accounts[address][token] = held - amount

    # -- Pools --------------------------------------------------------------

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    def create_pool(
        self,
        token0: str,
        token1: str,
        decimals0: int,
        decimals1: int,
        pool_type: PoolType,
        admin: str,
        fees: Optional[FeeConfig] = None,
        arbitrage_list: Optional[AllowList] = None,
    ) -> TwammPool:
        """Create a pool; one pool per (pair, pool type)."""
        if token0 == token1:
            raise CallerError(ErrorCode.INVALID_OPERATION, "pool tokens must differ")
        if token0 > token1:
            token0, token1 = token1, token0
            decimals0, decimals1 = decimals1, decimals0

        for pool in self._pools.values():
            s = pool.state
            if s.token0 == token0 and s.token1 == token1 and s.pool_type == pool_type:
                raise CallerError(
                    ErrorCode.DUPLICATE_POOL, f"{token0}/{token1} {PoolType(pool_type).name} pool exists"
                )

        self._pool_sequence += 1
        pool_id = self._deterministic_pool_id(token0, token1, int(pool_type), self._pool_sequence)
        state = new_pool_state(
            pool_id, token0, token1, decimals0, decimals1, pool_type, admin, self._block_number, fees,
        )
        pool = TwammPool(state, self, arbitrage_list)
        self._pools[pool_id] = pool
        self._pool_balances[pool_id] = [0, 0]
        logger.info(
            "Pool %s created: %s/%s type=%s admin=%s",
            pool_id, token0, token1, PoolType(pool_type).name, admin,
        )
        return pool

    def get_pool(self, pool_id: str) -> TwammPool:
        pool = self._pools.get(pool_id)
        if pool is None:
            raise CallerError(ErrorCode.INVALID_OPERATION, f"unknown pool {pool_id}")
        return pool

    def get_pool_balances(self, pool_id: str) -> Tuple[int, int]:
        balances = self._pool_balances[pool_id]
        return balances[0], balances[1]

    def inject(self, pool_id: str, token_index: int, amount: int) -> None:
        """Operator top-up of a pool balance, restoring reserves after a shortfall."""
        if amount <= 0:
            raise CallerError(ErrorCode.ZERO_AMOUNT, "injection must be positive")
        self._pool_balances[pool_id][token_index] += amount
        logger.warning("Pool %s: operator injected %d of token%d", pool_id, amount, token_index)

    # -- Calls --------------------------------------------------------------

    def swap(self, pool_id: str, op: PoolOperation) -> PoolCallResult:
        return self._call(pool_id, op, Callback.SWAP)

    def join_pool(self, pool_id: str, op: PoolOperation) -> PoolCallResult:
        return self._call(pool_id, op, Callback.JOIN)

    def exit_pool(self, pool_id: str, op: PoolOperation) -> PoolCallResult:
        return self._call(pool_id, op, Callback.EXIT)

    def _call(self, pool_id: str, op: PoolOperation, callback: Callback) -> PoolCallResult:
        pool = self.get_pool(pool_id)
        op.validate_basic()
        tokens = pool.state.tokens

        # Check funds before the pool runs
        for index, amount in enumerate(op.input_amounts()):
            if self.balance_of(op.sender, tokens[index]) < amount:
                raise CallerError(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"{op.sender} holds {self.balance_of(op.sender, tokens[index])} {tokens[index]}, needs {amount}",
                )

        balances = self.get_pool_balances(pool_id)
        callbacks = {
            Callback.SWAP: pool.on_swap,
            Callback.JOIN: pool.on_join,
            Callback.EXIT: pool.on_exit,
        }
        snapshot = pool.take_snapshot()
        result = callbacks[callback](self, op, balances)
        try:
            self._settle(pool, op, result)
        except Exception:
            pool.restore_snapshot(snapshot)
            raise
        return result

    def _settle(self, pool: TwammPool, op: PoolOperation, result: PoolCallResult) -> None:
        tokens = pool.state.tokens
        pool_balances = self._pool_balances[pool.pool_id]

        # Validate everything before moving anything
        for index in (0, 1):
            delta = result.deltas[index]
            outflow = (-delta if delta < 0 else 0) + result.protocol_fees_due[index]
            if delta > 0 and self.balance_of(op.sender, tokens[index]) < delta:
                raise CallerError(
                    ErrorCode.INSUFFICIENT_BALANCE, f"{op.sender} cannot pay {delta} {tokens[index]}"
                )
            if pool_balances[index] + max(delta, 0) < outflow:
                logger.error(
                    "Pool %s: outflow %d of %s exceeds balance %d",
                    pool.pool_id, outflow, tokens[index], pool_balances[index],
                )
                raise InvariantViolation(
                    ErrorCode.INSUFFICIENT_CUSTODIED_BALANCE,
                    f"pool {pool.pool_id} cannot pay {outflow} {tokens[index]}",
                )

        for index in (0, 1):
            token = tokens[index]
            delta = result.deltas[index]
            if delta > 0:
                self._debit(op.sender, token, delta)
                pool_balances[index] += delta
            elif delta < 0:
                pool_balances[index] += delta
                self.credit(op.recipient, token, -delta)
            due = result.protocol_fees_due[index]
            if due:
                pool_balances[index] -= due
                self.credit(self.protocol_fee_collector, token, due)

    @staticmethod
    def _deterministic_pool_id(token0: str, token1: str, pool_type: int, seq: int) -> str:
        """Deterministic pool ID."""
        raw = f"{token0}:{token1}:{pool_type}:{seq}".encode()
        return hashlib.blake2b(raw, digest_size=8).hexdigest()
