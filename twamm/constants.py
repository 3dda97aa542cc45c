"""
TWAMM Engine Constants

This module consolidates the protocol constants of the virtual-order engine
and the environment configuration read once at import. Constants are
organized by category for easy reference and maintenance.
"""
import ast
from enum import IntEnum
from typing import Dict, NamedTuple

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

ENGINE_DEFAULTS = {
    'TWAMM_DEFAULT_POOL_TYPE':         'LIQUID',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE VALUES BELOW DEFINE POOL ECONOMICS. CHANGING THEM CHANGES THE
# RESULT OF EVERY REPLAYED INTERVAL AND EVERY ORDER SETTLEMENT.

# ==================================================================================
# FIXED-POINT AND FEE DENOMINATORS
# ==================================================================================
TOTAL_FP = 100_000          # Fee points denominator (1 FP = 0.001%)
ONE = 10 ** 18              # 18-decimal fixed point, used for the protocol fee fraction
MAX_FEE_FP = 1_000          # 1% ceiling for any configurable swap fee
MAX_FEE_SHIFT = 4           # Platform fee shift range is 1..4 (0 disables it)


# ==================================================================================
# BIT WIDTHS
# ==================================================================================
U96_MAX = (1 << 96) - 1     # Fee counters
U112_MAX = (1 << 112) - 1   # Order principal, proceeds, sales rates, deposits
U128_MAX = (1 << 128) - 1   # Proceeds accumulators (wrapping)


# ==================================================================================
# TOKEN AND LIQUIDITY LIMITS
# ==================================================================================
MIN_TOKEN_DECIMALS = 2
MAX_TOKEN_DECIMALS = 22
MINIMUM_LIQUIDITY = 1_000   # Shares locked to the null address on the first join
NULL_ADDRESS = "0x0000000000000000000000000000000000000000"


# ==================================================================================
# POOL TYPES
# ==================================================================================
class PoolType(IntEnum):
    """Pool types, each with its own interval length and fee schedule.  Values are consensus-critical."""
    STABLE = 0
    LIQUID = 1
    VOLATILE = 2
    DAILY = 3


class PoolTypeParameters(NamedTuple):
    order_block_interval: int
    max_order_intervals: int
    short_term_fee_fp: int
    partner_fee_fp: int
    long_term_fee_fp: int


# Max intervals cover roughly five years of blocks at 12 seconds per block.
POOL_TYPE_PARAMETERS: Dict[int, PoolTypeParameters] = {
    PoolType.STABLE:   PoolTypeParameters(75,    175_320, 10,  5,  30),
    PoolType.LIQUID:   PoolTypeParameters(300,   43_830,  50,  25, 150),
    PoolType.VOLATILE: PoolTypeParameters(1_200, 10_958,  100, 50, 300),
    PoolType.DAILY:    PoolTypeParameters(7_200, 1_825,   100, 50, 300),
}


# ==================================================================================
# CONFIGURATION HELPER CLASSES
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = ENGINE_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        # ast.literal_eval expects "True"/"False"
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
