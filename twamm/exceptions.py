"""
TWAMM Exceptions

Custom exception classes for the TWAMM engine.  Every failure raised by the
engine carries a stable, machine-checkable error code rendered as ``TWM#NNN``.
"""

from enum import IntEnum


class ErrorCode(IntEnum):
    """Stable error codes.  Values are part of the public interface."""
    # Authorization
    SENDER_NOT_ADMIN = 2
    SENDER_NOT_PARTNER = 3
    NON_CUSTODIAN_CALLER = 4
    SENDER_NOT_FEE_ADDRESS = 6
    SENDER_NOT_ORDER_OWNER_OR_DELEGATE = 8
    RECIPIENT_NOT_OWNER = 10

    # Pool state
    POOL_PAUSED = 100

    # Operations
    INVALID_OPERATION = 200
    ZERO_AMOUNT = 201
    INSUFFICIENT_LIQUIDITY = 202
    MINIMUM_NOT_SATISFIED = 203
    INSUFFICIENT_BALANCE = 204
    INVALID_ADDRESS = 205

    # Long-term orders
    MAX_ORDER_LENGTH_EXCEEDED = 223
    ZERO_SALES_RATE = 224
    INCORRECT_EXTEND_TOKEN = 225
    CANT_CANCEL_COMPLETED_ORDER = 227
    NO_FUNDS_AVAILABLE = 228
    ORDER_EXPIRED = 229
    INSUFFICIENT_EXTEND_FUNDS = 230
    ORDER_PAUSED = 231
    ORDER_NOT_PAUSED = 232

    # Configuration
    UNSUPPORTED_TOKEN_DECIMALS = 300
    PARAMETER_OUT_OF_RANGE = 301
    INVALID_POOL_TYPE = 302

    # Internal consistency
    REENTRANCY = 400
    OVERFLOW = 401
    UNDERFLOW = 402
    INSUFFICIENT_CUSTODIED_BALANCE = 403

    # Registry
    DUPLICATE_POOL = 502

    @property
    def tag(self) -> str:
        return f"TWM#{int(self):03d}"


class TwammException(Exception):
    """Base exception for TWAMM."""
    pass


class TwammError(TwammException):
    """An engine failure carrying an :class:`ErrorCode`."""

    def __init__(self, code: ErrorCode, message: str = ""):
        self.code = ErrorCode(code)
        self.detail = message
        text = f"{self.code.tag} {self.code.name}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class CallerError(TwammError):
    """The caller asked for something the pool state does not allow."""
    pass


class InvariantViolation(TwammError):
    """Internal bookkeeping disagrees with itself or with the custodian."""
    pass


class ConfigurationError(TwammError):
    """Invalid pool, fee or engine configuration."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.PARAMETER_OUT_OF_RANGE):
        super().__init__(code, message)
