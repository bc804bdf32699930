"""
Typed events published on every state change.

`seq` and `timestamp` are stamped by the EventBus at publish time, so seq is
strictly increasing in publish order across all event types.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EngineEvent(BaseModel):
    """Base event."""

    type: str
    seq: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)
    position_id: str

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class PositionOpened(EngineEvent):
    type: Literal["position_opened"] = "position_opened"
    owner: str
    base_asset: str
    quote_asset: str
    yield_amount0: int
    yield_amount1: int
    liquidity: int
    hedge_position_id: str
    hedge_leg_value: int
    hedge_reserve: int


class PositionClosed(EngineEvent):
    type: Literal["position_closed"] = "position_closed"
    owner: str
    amount0_returned: int
    amount1_returned: int
    fees0: int
    fees1: int


class PositionCloseIncomplete(EngineEvent):
    type: Literal["position_close_incomplete"] = "position_close_incomplete"
    owner: str
    open_legs: List[str]
    errors: dict = Field(default_factory=dict)


class FeesCollected(EngineEvent):
    type: Literal["fees_collected"] = "fees_collected"
    owner: str
    base_asset: str
    quote_asset: str
    fees0: int
    fees1: int


class LiquidityAdded(EngineEvent):
    type: Literal["liquidity_added"] = "liquidity_added"
    owner: str
    amount0: int
    amount1: int
    liquidity: int


class HedgeOpened(EngineEvent):
    type: Literal["hedge_opened"] = "hedge_opened"
    owner: str
    collateral_asset: str
    shorted_asset: str
    collateral: int
    debt: int
    leverage_factor: int
    loan_amount: int
    loan_fee: int = 0


class HedgeClosed(EngineEvent):
    type: Literal["hedge_closed"] = "hedge_closed"
    owner: str
    collateral_asset: str
    shorted_asset: str
    debt_repaid: int
    collateral_returned: int
    close_loan_amount: Optional[int] = None


AnyEvent = Union[
    PositionOpened,
    PositionClosed,
    PositionCloseIncomplete,
    FeesCollected,
    LiquidityAdded,
    HedgeOpened,
    HedgeClosed,
]
