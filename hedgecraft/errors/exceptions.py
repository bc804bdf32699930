"""
Exception classes for HedgeCraft.

Every error raised by the engine is a HedgeCraftError carrying a stable
error code, so callers get one typed failure with enough context to know
what was (not) moved.
"""

from typing import Optional, Dict, Any

from .codes import ErrorCode, get_error_description


class HedgeCraftError(Exception):
    """Base exception for all HedgeCraft errors."""

    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        error_code = code or self.error_code
        self.code = error_code.code
        self.message = message or error_code.message
        self.description = description or get_error_description(self.code)
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for structured logging and callers."""
        return {
            "error_code": self.code,
            "message": self.message,
            "description": self.description,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class ValidationError(HedgeCraftError):
    """Input validation error. Raised before any side effect."""

    error_code = ErrorCode.INVALID_INPUT

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(
            message=message,
            details={"field": field, **(details or {})},
            code=code,
        )


class InvalidInputError(ValidationError):
    error_code = ErrorCode.INVALID_INPUT


class InvalidRangeError(ValidationError):
    error_code = ErrorCode.INVALID_RANGE


class InvalidAssetsError(ValidationError):
    error_code = ErrorCode.INVALID_ASSETS


# ---------------------------------------------------------------------------
# Position state
# ---------------------------------------------------------------------------

class PositionError(HedgeCraftError):
    """Operation not valid for the position's current state."""

    error_code = ErrorCode.POSITION_NOT_FOUND

    def __init__(
        self,
        message: Optional[str] = None,
        position_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        error_details = dict(details or {})
        if position_id:
            error_details["position_id"] = position_id
        self.position_id = position_id
        super().__init__(message=message, details=error_details, code=code)


class PositionNotFoundError(PositionError):
    error_code = ErrorCode.POSITION_NOT_FOUND


class PositionAlreadyClosedError(PositionError):
    error_code = ErrorCode.POSITION_ALREADY_CLOSED


class PositionBusyError(PositionError):
    error_code = ErrorCode.POSITION_BUSY


class PositionNotActiveError(PositionError):
    error_code = ErrorCode.POSITION_NOT_ACTIVE


class PositionCloseIncompleteError(PositionError):
    """One or both legs failed to tear down; the position is partially closed."""

    error_code = ErrorCode.POSITION_CLOSE_INCOMPLETE

    def __init__(
        self,
        message: Optional[str] = None,
        position_id: Optional[str] = None,
        open_legs: Optional[list] = None,
        leg_errors: Optional[Dict[str, str]] = None,
    ):
        self.open_legs = list(open_legs or [])
        self.leg_errors = dict(leg_errors or {})
        super().__init__(
            message=message,
            position_id=position_id,
            details={"open_legs": self.open_legs, "leg_errors": self.leg_errors},
        )


class InvalidTransitionError(HedgeCraftError):
    """Lifecycle state machine rejected a transition."""

    error_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            message=f"Invalid transition: {current} → {target}",
            details={"from": current, "to": target},
        )


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class AuthError(HedgeCraftError):
    """Caller identity does not permit the operation."""

    error_code = ErrorCode.UNAUTHORIZED_OWNER

    def __init__(
        self,
        message: Optional[str] = None,
        caller: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = dict(details or {})
        if caller is not None:
            error_details["caller"] = caller
        super().__init__(message=message, details=error_details)


class UnauthorizedOwnerError(AuthError):
    error_code = ErrorCode.UNAUTHORIZED_OWNER


class UnauthorizedCallbackError(AuthError):
    error_code = ErrorCode.UNAUTHORIZED_CALLBACK


# ---------------------------------------------------------------------------
# Funds
# ---------------------------------------------------------------------------

class InsufficientFundsError(HedgeCraftError):
    """Insufficient funds for operation."""

    error_code = ErrorCode.INSUFFICIENT_BALANCE

    def __init__(
        self,
        message: Optional[str] = None,
        required: Optional[int] = None,
        available: Optional[int] = None,
        asset: Optional[str] = None,
        account: Optional[str] = None,
    ):
        details = {}
        if required is not None:
            details["required"] = required
        if available is not None:
            details["available"] = available
        if asset is not None:
            details["asset"] = asset
        if account is not None:
            details["account"] = account
        self.required = required
        self.available = available
        super().__init__(message=message, details=details)


class InsufficientBalanceError(InsufficientFundsError):
    error_code = ErrorCode.INSUFFICIENT_BALANCE


class InsufficientRepaymentError(InsufficientFundsError):
    error_code = ErrorCode.INSUFFICIENT_REPAYMENT


# ---------------------------------------------------------------------------
# External venues
# ---------------------------------------------------------------------------

class VenueError(HedgeCraftError):
    """External venue failure. The whole attempt is rolled back."""

    error_code = ErrorCode.VENUE_UNAVAILABLE

    def __init__(
        self,
        message: Optional[str] = None,
        venue: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = dict(details or {})
        if venue:
            error_details["venue"] = venue
        super().__init__(message=message, details=error_details)


class LoanRejectedError(VenueError):
    error_code = ErrorCode.LOAN_REJECTED


class SlippageExceededError(VenueError):
    error_code = ErrorCode.SLIPPAGE_EXCEEDED


class DeadlineExceededError(VenueError):
    error_code = ErrorCode.DEADLINE_EXCEEDED


class InsufficientLiquidityError(VenueError):
    error_code = ErrorCode.INSUFFICIENT_LIQUIDITY


class VenueUnavailableError(VenueError):
    error_code = ErrorCode.VENUE_UNAVAILABLE


# ---------------------------------------------------------------------------
# Fixed-point arithmetic
# ---------------------------------------------------------------------------

class FixedPointError(HedgeCraftError):
    """Arithmetic failure. Never clamped."""

    error_code = ErrorCode.DIVISION_BY_ZERO

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(
            message=message,
            details={"operation": operation} if operation else {},
        )


class DivisionByZeroError(FixedPointError):
    error_code = ErrorCode.DIVISION_BY_ZERO


class ArithmeticOverflowError(FixedPointError):
    error_code = ErrorCode.ARITHMETIC_OVERFLOW
