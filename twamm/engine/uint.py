"""
Fixed-width unsigned integer helpers.

Python integers are unbounded, so every quantity that has a storage width
(fees 96 bits, order principal and proceeds 112 bits, accumulators 128 bits)
is range-checked explicitly.  The proceeds accumulator is the only value that
wraps; every other value fails loudly when it leaves its range.
"""

from __future__ import annotations

from ..constants import U96_MAX, U112_MAX, U128_MAX
from ..exceptions import CallerError, ErrorCode, InvariantViolation


def wrapping_add(a: int, b: int) -> int:
    """128-bit addition modulo 2**128."""
    return (a + b) & U128_MAX


def wrapping_sub(a: int, b: int) -> int:
    """128-bit subtraction modulo 2**128.

    Only meaningful as the distance between two accumulator snapshots taken
    within one wrap period of each other.
    """
    return (a - b) & U128_MAX


def check_u112(value: int, what: str = "value") -> int:
    if value < 0:
        raise InvariantViolation(ErrorCode.UNDERFLOW, f"{what} is negative ({value})")
    if value > U112_MAX:
        raise CallerError(ErrorCode.OVERFLOW, f"{what} exceeds 112 bits")
    return value


def check_u96(value: int, what: str = "value") -> int:
    if value < 0:
        raise InvariantViolation(ErrorCode.UNDERFLOW, f"{what} is negative ({value})")
    if value > U96_MAX:
        raise CallerError(ErrorCode.OVERFLOW, f"{what} exceeds 96 bits")
    return value


def checked_sub(a: int, b: int, what: str = "value") -> int:
    """Subtraction that treats a negative result as a bookkeeping fault."""
    result = a - b
    if result < 0:
        raise InvariantViolation(ErrorCode.UNDERFLOW, f"{what} underflow ({a} - {b})")
    return result
