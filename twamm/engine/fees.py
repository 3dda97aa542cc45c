"""
Fee arithmetic: fee-point charges and the protocol / LP / platform split.

Every gross fee is divided three ways.  The protocol fraction ``p`` is an
18-decimal fixed-point number in ``[0, ONE]``; the platform share is switched
on by a fee shift ``s`` in ``1..4``:

    lp_and_platform = g * (ONE - p) // ONE
    platform        = lp_and_platform // (1 + 2**s)
    lp              = platform << s
    protocol        = g - lp - platform

All divisions round down, so rounding dust always lands in the protocol
share and nothing is lost.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..constants import MAX_FEE_SHIFT, ONE, TOTAL_FP
from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class FeeSplit:
    """One gross fee divided into its three destinations."""
    lp: int = 0
    protocol: int = 0
    platform: int = 0

    @property
    def total(self) -> int:
        return self.lp + self.protocol + self.platform

    @property
    def withheld(self) -> int:
        """Portion that leaves reserves and becomes a fee liability."""
        return self.protocol + self.platform


def fee_from_points(amount: int, fee_fp: int) -> int:
    """Fee charged on *amount* at *fee_fp* points, rounded up in the pool's favour."""
    if amount <= 0 or fee_fp <= 0:
        return 0
    return -(-amount * fee_fp // TOTAL_FP)


def validate_fee_split_config(protocol_fee: int, fee_shift: int) -> None:
    if not 0 <= protocol_fee <= ONE:
        raise ConfigurationError(f"protocol fee {protocol_fee} outside [0, {ONE}]")
    if not 0 <= fee_shift <= MAX_FEE_SHIFT:
        raise ConfigurationError(f"fee shift {fee_shift} outside [0, {MAX_FEE_SHIFT}]")


def split_fee(
    gross: int,
    protocol_fee: int,
    fee_shift: int,
    collect_protocol_fees: bool = True,
) -> FeeSplit:
    """
    Split a gross fee into LP, protocol and platform shares.

    Args:
        gross: fee amount in token units
        protocol_fee: protocol fraction, 18-decimal fixed point
        fee_shift: 0 disables the platform share, 1..4 sets LP:platform to 2**s:1
        collect_protocol_fees: when off, the protocol fraction is treated as 0
            and any rounding dust stays with LPs

    Returns:
        FeeSplit whose parts sum to *gross*
    """
    validate_fee_split_config(protocol_fee, fee_shift)
    if gross <= 0:
        return FeeSplit()

    p = protocol_fee if collect_protocol_fees else 0
    if p == 0 and fee_shift == 0:
        return FeeSplit(lp=gross)

    lp_and_platform = gross * (ONE - p) // ONE
    if fee_shift == 0:
        lp, platform = lp_and_platform, 0
    else:
        platform = lp_and_platform // (1 + (1 << fee_shift))
        lp = platform << fee_shift
    protocol = gross - lp - platform

    if not collect_protocol_fees:
        return FeeSplit(lp=lp + protocol, platform=platform)
    return FeeSplit(lp=lp, protocol=protocol, platform=platform)
