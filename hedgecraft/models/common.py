"""
Common enums and base types used across the engine.
"""
from enum import Enum


class PositionStatus(str, Enum):
    """Composite position lifecycle."""
    ACTIVE = "active"
    CLOSING = "closing"
    PARTIALLY_CLOSED = "partially_closed"
    CLOSED = "closed"


class HedgeState(str, Enum):
    """Hedge leg lifecycle.

    Open path:  REQUESTED → COLLATERALIZED → BORROWED → OPEN
    Close path: OPEN → REPAYING → WITHDRAWN → CLOSED
    """
    REQUESTED = "requested"
    COLLATERALIZED = "collateralized"
    BORROWED = "borrowed"
    OPEN = "open"
    REPAYING = "repaying"
    WITHDRAWN = "withdrawn"
    CLOSED = "closed"


class LoanDirection(str, Enum):
    """Which side of the hedge lifecycle a same-transaction loan funds."""
    OPEN = "open"
    CLOSE = "close"


class Leg(str, Enum):
    """The two legs of a composite position."""
    YIELD = "yield"
    HEDGE = "hedge"


# Type aliases
Address = str
AssetId = str
PositionId = str
RequestId = str
