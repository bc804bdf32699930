"""
Error codes and messages for HedgeCraft.

Format: XXX-NNNN
- XXX: Category (3 letters)
- NNNN: Sequential number (4 digits)
"""

from enum import Enum
from typing import Dict


class ErrorCategory(Enum):
    """Error categories."""
    GENERAL = "GEN"
    VALIDATION = "VAL"
    POSITION = "POS"
    HEDGE = "HDG"
    VENUE = "VEN"
    MATH = "MTH"
    AUTH = "AUT"
    FUNDS = "FND"


class ErrorCode(Enum):
    """
    All error codes for HedgeCraft.
    
    Format: CATEGORY-NNNN
    """
    # General Errors (GEN)
    UNKNOWN_ERROR = ("GEN-0001", "An unexpected error occurred")
    INVALID_TRANSITION = ("GEN-0002", "Invalid lifecycle state transition")
    
    # Validation Errors (VAL)
    INVALID_INPUT = ("VAL-0001", "Invalid input provided")
    INVALID_RANGE = ("VAL-0002", "Price range lower bound must be below upper bound")
    INVALID_ASSETS = ("VAL-0003", "Invalid asset pair")
    INVALID_LEVERAGE = ("VAL-0004", "Leverage outside the configured safe bound")
    DEPOSIT_TOO_SMALL = ("VAL-0005", "Deposit below configured minimum")
    
    # Position Errors (POS)
    POSITION_NOT_FOUND = ("POS-0001", "Position not found")
    POSITION_ALREADY_CLOSED = ("POS-0002", "Position already closed")
    POSITION_BUSY = ("POS-0003", "Another operation is in flight for this position")
    POSITION_CLOSE_INCOMPLETE = ("POS-0004", "Position partially closed")
    POSITION_NOT_ACTIVE = ("POS-0005", "Position is not active")
    
    # Hedge Errors (HDG)
    INSUFFICIENT_REPAYMENT = ("HDG-0001", "Swap proceeds do not cover loan repayment")
    
    # Venue Errors (VEN)
    LOAN_REJECTED = ("VEN-0001", "Same-transaction loan rejected")
    SLIPPAGE_EXCEEDED = ("VEN-0002", "Swap output below minimum")
    DEADLINE_EXCEEDED = ("VEN-0003", "Swap deadline exceeded")
    INSUFFICIENT_LIQUIDITY = ("VEN-0004", "Insufficient liquidity at venue")
    VENUE_UNAVAILABLE = ("VEN-0005", "Venue unavailable")
    
    # Arithmetic Errors (MTH)
    DIVISION_BY_ZERO = ("MTH-0001", "Division by zero")
    ARITHMETIC_OVERFLOW = ("MTH-0002", "Fixed-point overflow")
    
    # Auth Errors (AUT)
    UNAUTHORIZED_OWNER = ("AUT-0001", "Caller is not the position owner")
    UNAUTHORIZED_CALLBACK = ("AUT-0002", "Unexpected loan callback")
    
    # Funds Errors (FND)
    INSUFFICIENT_BALANCE = ("FND-0001", "Insufficient balance or allowance")

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        # Parse category from code
        self.category = ErrorCategory(code.split("-")[0])


def get_error_info(code: ErrorCode) -> Dict[str, str]:
    """Get error information as dictionary."""
    return {
        "error_code": code.code,
        "message": code.message,
        "category": code.category.value,
    }


# Detailed descriptions for documentation
ERROR_DESCRIPTIONS: Dict[str, str] = {
    "GEN-0001": "An unexpected error occurred. Nothing was moved.",
    "GEN-0002": "The record cannot move from its current state to the requested one.",
    
    "VAL-0001": "An input is outside its constraints. Correct it and retry.",
    "VAL-0002": "The liquidity range is empty or inverted. Lower must be strictly below upper.",
    "VAL-0003": "Assets must be non-empty, and a composite position needs two distinct assets.",
    "VAL-0004": "Leverage must stay within the configured bound (1.0x to 3.0x by default).",
    "VAL-0005": "amount0 + amount1 is below the configured minimum deposit.",
    
    "POS-0001": "No position exists with this identifier.",
    "POS-0002": "This position has already been closed. Nothing was done.",
    "POS-0003": "Another open/close/collect is running on this position. Retry once it finishes.",
    "POS-0004": "One leg could not be torn down. The position is partially closed; call resume_close.",
    "POS-0005": "The operation requires an active position.",
    
    "HDG-0001": "Converting borrowed funds did not produce enough to repay the loan and its fee. The open was aborted.",
    
    "VEN-0001": "The lending venue refused or could not settle the same-transaction loan.",
    "VEN-0002": "The swap would return less than the slippage-protected minimum.",
    "VEN-0003": "The swap deadline passed before execution. Nothing was swapped.",
    "VEN-0004": "The venue does not have enough liquidity or collateral headroom.",
    "VEN-0005": "The venue could not be reached. Reads are retried; writes are not.",
    
    "MTH-0001": "A fixed-point division had a zero denominator.",
    "MTH-0002": "A fixed-point result does not fit in 256 bits.",
    
    "AUT-0001": "Only the account that opened the position may change it.",
    "AUT-0002": "The loan callback did not match a pending request from the lending venue.",
    
    "FND-0001": "The paying account lacks the balance or allowance for this operation.",
}


def get_error_description(code: str) -> str:
    """Get detailed description for an error code."""
    return ERROR_DESCRIPTIONS.get(code, "No additional information available for this error.")
