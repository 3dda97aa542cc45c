"""
Pool operation envelope.

The custodian calls into a pool with an operation-type tag and
operation-specific parameters, and gets back signed balance deltas plus any
protocol fees due.  This module defines both sides of that call.

Operation types and their callbacks:
  - SWAP, PARTNER_SWAP, LONG_TERM_SWAP:   on_swap
  - JOIN, REWARD, EXTEND:                 on_join
  - EXIT, WITHDRAW, CANCEL, FEE_WITHDRAW: on_exit
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

from ..constants import NULL_ADDRESS
from ..exceptions import CallerError, ErrorCode


# ---------------------------------------------------------------------------
# Operation types
# ---------------------------------------------------------------------------

class OperationType(IntEnum):
    """All pool operation types.  Values are consensus-critical."""
    SWAP = 1
    PARTNER_SWAP = 2
    LONG_TERM_SWAP = 3
    JOIN = 4
    REWARD = 5
    EXTEND = 6
    EXIT = 7
    WITHDRAW = 8
    CANCEL = 9
    FEE_WITHDRAW = 10


class Callback(IntEnum):
    SWAP = 0
    JOIN = 1
    EXIT = 2


OPERATION_CALLBACKS: Dict[OperationType, Callback] = {
    OperationType.SWAP: Callback.SWAP,
    OperationType.PARTNER_SWAP: Callback.SWAP,
    OperationType.LONG_TERM_SWAP: Callback.SWAP,
    OperationType.JOIN: Callback.JOIN,
    OperationType.REWARD: Callback.JOIN,
    OperationType.EXTEND: Callback.JOIN,
    OperationType.EXIT: Callback.EXIT,
    OperationType.WITHDRAW: Callback.EXIT,
    OperationType.CANCEL: Callback.EXIT,
    OperationType.FEE_WITHDRAW: Callback.EXIT,
}

REQUIRED_PARAMS: Dict[OperationType, Tuple[str, ...]] = {
    OperationType.SWAP: ("token_in", "amount_in"),
    OperationType.PARTNER_SWAP: ("token_in", "amount_in"),
    OperationType.LONG_TERM_SWAP: ("token_in", "amount_in", "num_intervals"),
    OperationType.JOIN: ("amount0", "amount1"),
    OperationType.REWARD: ("amount0", "amount1"),
    OperationType.EXTEND: ("order_id", "amount0", "amount1"),
    OperationType.EXIT: ("shares",),
    OperationType.WITHDRAW: ("order_id",),
    OperationType.CANCEL: ("order_id",),
    OperationType.FEE_WITHDRAW: (),
}

# Parameters whose value is an amount of the given token index
INPUT_PARAMS: Dict[OperationType, Tuple[str, ...]] = {
    OperationType.JOIN: ("amount0", "amount1"),
    OperationType.REWARD: ("amount0", "amount1"),
    OperationType.EXTEND: ("amount0", "amount1"),
}

_INTEGER_PARAMS = (
    "token_in", "amount_in", "min_amount_out", "num_intervals", "amount0", "amount1",
    "order_id", "shares", "min_shares", "min_amount0", "min_amount1",
)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

@dataclass
class PoolOperation:
    """
    One call from the custodian into a pool.

    Fields are consensus-critical; changing any field changes the op hash.
    """
    op_type: OperationType
    sender: str
    params: Dict[str, Any] = field(default_factory=dict)
    recipient: str = ""

    def __post_init__(self):
        self.op_type = OperationType(self.op_type)
        if not self.recipient:
            self.recipient = self.sender

    @property
    def callback(self) -> Callback:
        return OPERATION_CALLBACKS[self.op_type]

    def input_amounts(self) -> Tuple[int, int]:
        """Amounts the sender must hold before the call, per token index."""
        p = self.params
        if self.op_type in INPUT_PARAMS:
            return int(p.get("amount0", 0)), int(p.get("amount1", 0))
        if self.callback == Callback.SWAP:
            amounts = [0, 0]
            amounts[int(p["token_in"])] = int(p["amount_in"])
            return amounts[0], amounts[1]
        return 0, 0

    # -- Hashing ------------------------------------------------------------

    def op_hash(self) -> str:
        """Deterministic operation hash."""
        params_json = json.dumps(self.params, sort_keys=True, default=str).encode("utf-8")
        raw = b"".join([
            int(self.op_type).to_bytes(1, "big"),
            self.sender.encode("utf-8"),
            self.recipient.encode("utf-8"),
            params_json,
        ])
        return hashlib.blake2b(raw, digest_size=32).hexdigest()

    # -- Serialization ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "op_type": int(self.op_type),
            "sender": self.sender,
            "recipient": self.recipient,
            "params": self.params,
            "op_hash": self.op_hash(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PoolOperation:
        try:
            op_type = OperationType(data["op_type"])
        except (KeyError, ValueError):
            raise CallerError(
                ErrorCode.INVALID_OPERATION, f"unknown operation type {data.get('op_type')!r}"
            ) from None
        return cls(
            op_type=op_type,
            sender=data["sender"],
            params=dict(data.get("params", {})),
            recipient=data.get("recipient", ""),
        )

    def encode(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def decode(cls, payload: str) -> PoolOperation:
        return cls.from_dict(json.loads(payload))

    # -- Validation ---------------------------------------------------------

    def validate_basic(self) -> bool:
        """
        Structural validation (no pool state needed).

        Raises:
            CallerError: INVALID_OPERATION or INVALID_ADDRESS with the reason
        """
        if not self.sender or self.sender == NULL_ADDRESS:
            raise CallerError(ErrorCode.INVALID_ADDRESS, "missing sender address")
        if self.recipient == NULL_ADDRESS:
            raise CallerError(ErrorCode.INVALID_ADDRESS, "recipient may not be the null address")

        for key in REQUIRED_PARAMS[self.op_type]:
            if key not in self.params:
                raise CallerError(
                    ErrorCode.INVALID_OPERATION, f"{self.op_type.name} missing param: {key}"
                )
        for key in _INTEGER_PARAMS:
            if key in self.params:
                value = self.params[key]
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise CallerError(
                        ErrorCode.INVALID_OPERATION, f"{key} must be a non-negative integer"
                    )
        if "token_in" in self.params and self.params["token_in"] not in (0, 1):
            raise CallerError(ErrorCode.INVALID_OPERATION, "token_in must be 0 or 1")
        return True

    def __repr__(self) -> str:
        return (f"PoolOperation(op={self.op_type.name}, sender={self.sender[:16]}, "
                f"hash={self.op_hash()[:12]}...)")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class PoolCallResult:
    """
    What a pool returns to the custodian.

    ``deltas`` are signed from the pool's side: positive amounts move from
    the sender into the pool, negative amounts move from the pool to the
    recipient.  ``protocol_fees_due`` leave the pool to the protocol fee
    collector.
    """

    __slots__ = ("deltas", "protocol_fees_due", "data")

    def __init__(
        self,
        deltas: Tuple[int, int] = (0, 0),
        protocol_fees_due: Tuple[int, int] = (0, 0),
        data: Optional[Dict[str, Any]] = None,
    ):
        self.deltas = (int(deltas[0]), int(deltas[1]))
        self.protocol_fees_due = (int(protocol_fees_due[0]), int(protocol_fees_due[1]))
        self.data = data or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deltas": list(self.deltas),
            "protocol_fees_due": list(self.protocol_fees_due),
            "data": self.data,
        }
