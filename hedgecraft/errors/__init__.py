"""
Error handling system for HedgeCraft.

Provides structured error codes and a typed exception hierarchy.
"""

from .codes import ErrorCode, ErrorCategory, get_error_info, get_error_description
from .exceptions import (
    HedgeCraftError,
    ValidationError,
    InvalidInputError,
    InvalidRangeError,
    InvalidAssetsError,
    PositionError,
    PositionNotFoundError,
    PositionAlreadyClosedError,
    PositionBusyError,
    PositionNotActiveError,
    PositionCloseIncompleteError,
    InvalidTransitionError,
    AuthError,
    UnauthorizedOwnerError,
    UnauthorizedCallbackError,
    InsufficientFundsError,
    InsufficientBalanceError,
    InsufficientRepaymentError,
    VenueError,
    LoanRejectedError,
    SlippageExceededError,
    DeadlineExceededError,
    InsufficientLiquidityError,
    VenueUnavailableError,
    FixedPointError,
    DivisionByZeroError,
    ArithmeticOverflowError,
)

__all__ = [
    # Codes
    "ErrorCode",
    "ErrorCategory",
    "get_error_info",
    "get_error_description",
    # Exceptions
    "HedgeCraftError",
    "ValidationError",
    "InvalidInputError",
    "InvalidRangeError",
    "InvalidAssetsError",
    "PositionError",
    "PositionNotFoundError",
    "PositionAlreadyClosedError",
    "PositionBusyError",
    "PositionNotActiveError",
    "PositionCloseIncompleteError",
    "InvalidTransitionError",
    "AuthError",
    "UnauthorizedOwnerError",
    "UnauthorizedCallbackError",
    "InsufficientFundsError",
    "InsufficientBalanceError",
    "InsufficientRepaymentError",
    "VenueError",
    "LoanRejectedError",
    "SlippageExceededError",
    "DeadlineExceededError",
    "InsufficientLiquidityError",
    "VenueUnavailableError",
    "FixedPointError",
    "DivisionByZeroError",
    "ArithmeticOverflowError",
]
