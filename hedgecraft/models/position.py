"""
Position records for the composite position and its hedge leg.

Amounts are integer base units; prices and leverage are WAD integers.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from hedgecraft.models.common import (
    Address, AssetId, HedgeState, LoanDirection, PositionId, PositionStatus, RequestId,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class YieldLegRef(BaseModel):
    """Reference to the concentrated-liquidity position held at the venue."""

    leg_id: str = Field(description="Venue identifier of the liquidity position")
    liquidity: int = Field(ge=0, description="Liquidity units minted")
    range_lower: int = Field(gt=0, description="Lower price bound (WAD)")
    range_upper: int = Field(gt=0, description="Upper price bound (WAD)")
    fee_tier: int = Field(default=3000, ge=0, description="Pool fee tier, 3000 == 0.30%")


class CompositePosition(BaseModel):
    """
    One yield leg plus one hedge leg, managed as a single unit.

    Owned by the PositionManager. The hedge leg is referenced by id only;
    the HedgeManager owns that record.
    """

    # Identification
    position_id: PositionId = Field(description="owner:sequence")
    owner: Address = Field(description="Depositor and recipient of all proceeds")
    sequence: int = Field(ge=1, description="Per-owner sequence number")

    # Assets
    base_asset: AssetId = Field(description="token0, collateral of the hedge")
    quote_asset: AssetId = Field(description="token1, shorted by the hedge")

    # Deposits
    deposit0: int = Field(ge=0, description="Total base asset deposited")
    deposit1: int = Field(ge=0, description="Total quote asset deposited")

    # Yield leg
    yield_leg: YieldLegRef
    yield_amount0: int = Field(ge=0, description="Base asset deployed to the venue")
    yield_amount1: int = Field(ge=0, description="Quote asset deployed to the venue")

    # Hedge leg
    hedge_position_id: str = Field(description="HedgeManager position id")
    hedge_leg_value: int = Field(ge=0, description="Principal committed to the hedge (base asset)")
    hedge_reserve: int = Field(ge=0, description="Quote asset hedge share held in custody")

    reference_price: int = Field(gt=0, description="Spot price base→quote at open (WAD)")

    # Lifecycle
    status: PositionStatus = Field(default=PositionStatus.ACTIVE)
    yield_leg_closed: bool = False
    hedge_leg_closed: bool = False
    state_history: List[dict] = Field(default_factory=list)

    # Running totals
    fees_collected0: int = 0
    fees_collected1: int = 0

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    closed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == PositionStatus.CLOSED

    @property
    def open_legs(self) -> List[str]:
        """Legs that have not been torn down yet."""
        legs = []
        if not self.yield_leg_closed:
            legs.append("yield")
        if not self.hedge_leg_closed:
            legs.append("hedge")
        return legs

    def update_state(self, new_status: PositionStatus, metadata: Optional[dict] = None):
        """Update lifecycle status with history tracking."""
        old_status = self.status
        self.status = new_status
        self.updated_at = _utcnow()
        if new_status == PositionStatus.CLOSED:
            self.closed_at = self.updated_at

        self.state_history.append({
            "from": old_status.value,
            "to": new_status.value,
            "timestamp": self.updated_at.isoformat(),
            "metadata": metadata or {},
        })

    def to_summary(self) -> dict:
        """Get position summary for logging/display."""
        return {
            "position_id": self.position_id,
            "owner": self.owner,
            "status": self.status.value,
            "pair": f"{self.base_asset}/{self.quote_asset}",
            "liquidity": self.yield_leg.liquidity,
            "yield_amount0": self.yield_amount0,
            "yield_amount1": self.yield_amount1,
            "hedge_leg_value": self.hedge_leg_value,
            "hedge_reserve": self.hedge_reserve,
            "open_legs": self.open_legs,
        }


class HedgePosition(BaseModel):
    """
    Leveraged short funded by a same-transaction loan.

    collateral_supplied == principal_amount + loan_amount once open.
    debt_borrowed is written once, inside the loan callback.
    """

    position_id: str = Field(description="Hedge position id")
    owner: Address = Field(description="Recipient of collateral and leftovers on close")

    collateral_asset: AssetId = Field(description="Asset supplied as collateral")
    shorted_asset: AssetId = Field(description="Asset borrowed and sold")

    principal_amount: int = Field(gt=0)
    leverage_factor: int = Field(description="WAD leverage, 1.25x == 1.25e18")
    loan_amount: int = Field(ge=0, description="principal × (leverage − 1)")

    collateral_supplied: int = 0
    debt_borrowed: int = 0
    shorted_held: int = Field(default=0, description="Borrowed units kept in custody")

    state: HedgeState = Field(default=HedgeState.REQUESTED)
    closed: bool = False
    state_history: List[dict] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_open(self) -> bool:
        return self.state == HedgeState.OPEN

    def update_state(self, new_state: HedgeState, metadata: Optional[dict] = None):
        """Update hedge state with history tracking."""
        old_state = self.state
        self.state = new_state
        self.updated_at = _utcnow()

        self.state_history.append({
            "from": old_state.value,
            "to": new_state.value,
            "timestamp": self.updated_at.isoformat(),
            "metadata": metadata or {},
        })


@dataclass
class PendingLoan:
    """
    Outstanding same-transaction loan request.

    Single use: the callback marks it consumed before doing any work, so a
    replayed callback with the same request id is rejected.
    """

    request_id: RequestId
    position_id: str
    direction: LoanDirection
    asset: AssetId
    amount: int
    record: HedgePosition
    consumed: bool = False
    # Filled in by the callback
    result: Optional[Union[HedgePosition, Dict[str, Any]]] = None
