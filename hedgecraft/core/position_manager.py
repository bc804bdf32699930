"""
Position Manager for HedgeCraft.

Ties one concentrated-liquidity position (the yield leg) and one leveraged
short (the hedge leg) into a single composite position with a shared
lifecycle and fee collection.

Key Responsibilities:
- Validate deposits and split them between the legs (79% yield by default)
- Open both legs inside one atomic settlement step
- Close both legs, surviving a failure on one of them (two-phase close)
- Forward fee collection and liquidity top-ups to the yield venue
- Report status: venue liquidity, owed fees, hedge health, IL estimate

Execution Order (Entry):
1. Validate assets, amounts, range and the owner's funding
2. Pull both deposits into custody
3. Open the yield leg with the yield shares, refund what the venue didn't use
4. Open the hedge leg with the base hedge share (quote hedge share stays in
   custody as `hedge_reserve`)
5. Record the position (only after every step succeeded)

Execution Order (Exit):
1. ACTIVE → CLOSING
2. Yield leg: withdraw all liquidity and collect fees to the owner
3. Hedge leg: close the short, release `hedge_reserve` to the owner
4. Both down → CLOSED; otherwise PARTIALLY_CLOSED and resume_close() later
"""
import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Optional, Tuple

from hedgecraft.config.engine import EngineConfig, get_engine_config
from hedgecraft.core.allocation import split_allocation
from hedgecraft.core.events import EventBus
from hedgecraft.core.hedge_manager import HedgeCloseResult, HedgeManager
from hedgecraft.core.liquidity_math import estimate_impermanent_loss, liquidity_from_amounts
from hedgecraft.errors import (
    ErrorCode,
    InsufficientBalanceError,
    InvalidAssetsError,
    InvalidInputError,
    InvalidRangeError,
    PositionAlreadyClosedError,
    PositionBusyError,
    PositionCloseIncompleteError,
    PositionNotActiveError,
    PositionNotFoundError,
    UnauthorizedOwnerError,
)
from hedgecraft.models.common import Leg, PositionStatus
from hedgecraft.models.events import (
    FeesCollected,
    LiquidityAdded,
    PositionClosed,
    PositionCloseIncomplete,
    PositionOpened,
)
from hedgecraft.models.position import CompositePosition, YieldLegRef
from hedgecraft.state.state_machine import PositionStateMachine
from hedgecraft.utils.logger import get_logger, log_position_event, log_risk_event
from hedgecraft.utils.retry import retry_venue_read
from hedgecraft.venues.interfaces import (
    AccountStatus,
    LegDetails,
    LiquidityVenue,
    Settlement,
    SwapVenue,
    TokenLedger,
)

logger = get_logger(__name__)


@dataclass
class CloseResult:
    """Result of a completed close."""

    position_id: str
    amount0_returned: int
    amount1_returned: int
    fees0: int
    fees1: int
    hedge: Optional[HedgeCloseResult] = None


@dataclass
class PositionStatusReport:
    """Point-in-time view of a composite position."""

    position_id: str
    status: PositionStatus
    liquidity: int
    owed0: int
    owed1: int
    hedge_closed: bool
    hedge_health: Optional[AccountStatus]
    reference_price: int
    current_price: int
    impermanent_loss_estimate: int  # WAD-scaled percent

    @property
    def open_legs(self) -> List[str]:
        legs = []
        if self.liquidity:
            legs.append(Leg.YIELD.value)
        if not self.hedge_closed:
            legs.append(Leg.HEDGE.value)
        return legs


@dataclass
class _TeardownTotals:
    amount0: int = 0
    amount1: int = 0
    fees0: int = 0
    fees1: int = 0
    hedge: Optional[HedgeCloseResult] = None


def _mark_hedge_leg_closed(position: CompositePosition) -> None:
    position.hedge_leg_closed = True


class PositionManager:
    """
    Orchestrates composite positions.

    Holds deposits in custody at `address`, owns the yield-leg venue
    positions and references hedge positions owned by the HedgeManager.

    Args:
        ledger: Token custody
        liquidity: Concentrated-liquidity venue
        swap: Swap venue (spot price for sizing and status)
        hedge_manager: Hedge lifecycle manager
        settlement: Atomic settlement for venue calls
        config: Engine parameters
        event_bus: Where position events are published
        address: This manager's custody account
    """

    def __init__(
        self,
        ledger: TokenLedger,
        liquidity: LiquidityVenue,
        swap: SwapVenue,
        hedge_manager: HedgeManager,
        settlement: Settlement,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
        address: str = "position-manager",
    ):
        self.ledger = ledger
        self.liquidity = liquidity
        self.swap = swap
        self.hedge_manager = hedge_manager
        self.settlement = settlement
        self.config = config or get_engine_config()
        self.event_bus = event_bus or hedge_manager.event_bus
        self.address = address

        self._positions: Dict[str, CompositePosition] = {}
        self._sequences: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._state_machine = PositionStateMachine()

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_position(
        self,
        owner: str,
        base_asset: str,
        quote_asset: str,
        amount0: int,
        amount1: int,
        range_lower: int,
        range_upper: int,
    ) -> str:
        """
        Open a composite position from a two-asset deposit.

        The owner must have approved this manager for amount0 of base_asset
        and amount1 of quote_asset.

        Returns:
            position_id ("owner:sequence")
        """
        self._validate_open(base_asset, quote_asset, amount0, amount1, range_lower, range_upper)
        await self._check_funding(owner, base_asset, amount0)
        await self._check_funding(owner, quote_asset, amount1)

        split0 = split_allocation(amount0, self.config.yield_percent)
        split1 = split_allocation(amount1, self.config.yield_percent)

        price = await self._spot_price(base_asset, quote_asset)
        expected_liquidity = liquidity_from_amounts(
            split0.yield_share, split1.yield_share, price, range_lower, range_upper
        )
        min_liquidity = expected_liquidity * (10_000 - self.config.slippage_bps) // 10_000

        log_position_event(
            logger, "open_requested", "pending", owner, base_asset, quote_asset,
            amount0=amount0, amount1=amount1,
            yield0=split0.yield_share, yield1=split1.yield_share,
            hedge0=split0.hedge_share, hedge1=split1.hedge_share,
        )

        async with self.settlement.atomic():
            await self.ledger.transfer_from(self.address, owner, self.address, base_asset, amount0)
            await self.ledger.transfer_from(self.address, owner, self.address, quote_asset, amount1)

            await self.ledger.approve(self.address, self.liquidity.address, base_asset, split0.yield_share)
            await self.ledger.approve(self.address, self.liquidity.address, quote_asset, split1.yield_share)
            mint = await self.liquidity.open(
                payer=self.address,
                owner=self.address,
                base_asset=base_asset,
                quote_asset=quote_asset,
                amount0=split0.yield_share,
                amount1=split1.yield_share,
                price_lower=range_lower,
                price_upper=range_upper,
                min_liquidity=min_liquidity,
                fee_tier=self.config.fee_tier,
            )
            await self._refund(
                owner, base_asset, quote_asset,
                split0.yield_share - mint.used0,
                split1.yield_share - mint.used1,
            )

            await self.ledger.approve(self.address, self.hedge_manager.address, base_asset, split0.hedge_share)
            hedge_position_id = await self.hedge_manager.open_short(
                owner=owner,
                collateral_asset=base_asset,
                shorted_asset=quote_asset,
                principal_amount=split0.hedge_share,
                leverage_factor=self.config.default_leverage_wad,
                payer=self.address,
            )

        sequence = self._sequences.get(owner, 0) + 1
        self._sequences[owner] = sequence
        position_id = f"{owner}:{sequence}"

        position = CompositePosition(
            position_id=position_id,
            owner=owner,
            sequence=sequence,
            base_asset=base_asset,
            quote_asset=quote_asset,
            deposit0=amount0,
            deposit1=amount1,
            yield_leg=YieldLegRef(
                leg_id=mint.leg_id,
                liquidity=mint.liquidity,
                range_lower=range_lower,
                range_upper=range_upper,
                fee_tier=self.config.fee_tier,
            ),
            yield_amount0=mint.used0,
            yield_amount1=mint.used1,
            hedge_position_id=hedge_position_id,
            hedge_leg_value=split0.hedge_share,
            hedge_reserve=split1.hedge_share,
            reference_price=price,
        )
        self._positions[position_id] = position

        log_position_event(
            logger, "opened", position_id, owner, base_asset, quote_asset,
            liquidity=mint.liquidity,
            yield_amount0=position.yield_amount0,
            yield_amount1=position.yield_amount1,
            hedge_position_id=hedge_position_id,
            hedge_leg_value=position.hedge_leg_value,
            hedge_reserve=position.hedge_reserve,
        )
        await self.event_bus.publish(PositionOpened(
            position_id=position_id,
            owner=owner,
            base_asset=base_asset,
            quote_asset=quote_asset,
            yield_amount0=position.yield_amount0,
            yield_amount1=position.yield_amount1,
            liquidity=mint.liquidity,
            hedge_position_id=hedge_position_id,
            hedge_leg_value=position.hedge_leg_value,
            hedge_reserve=position.hedge_reserve,
        ))
        return position_id

    def _validate_open(
        self,
        base_asset: str,
        quote_asset: str,
        amount0: int,
        amount1: int,
        range_lower: int,
        range_upper: int,
    ) -> None:
        if not base_asset or not quote_asset:
            raise InvalidAssetsError("Base and quote assets are required", field="asset")
        if base_asset == quote_asset:
            raise InvalidAssetsError(
                f"Base and quote asset are both {base_asset}",
                field="quote_asset",
            )
        if amount0 <= 0 or amount1 <= 0:
            raise InvalidInputError(
                f"Deposit amounts must be positive, got {amount0} and {amount1}",
                field="amount",
            )
        # Raw units of two different assets are added together here; this is
        # a size floor, not a valuation.
        if amount0 + amount1 < self.config.min_deposit:
            raise InvalidInputError(
                f"Combined deposit {amount0 + amount1} below minimum {self.config.min_deposit}",
                field="amount",
                code=ErrorCode.DEPOSIT_TOO_SMALL,
            )
        if range_lower >= range_upper:
            raise InvalidRangeError(
                f"Range lower {range_lower} must be below upper {range_upper}",
                field="range_lower",
            )
        if range_lower <= 0:
            raise InvalidInputError("Range bounds must be positive", field="range_lower")

    async def _check_funding(self, account: str, asset: str, amount: int) -> None:
        balance = await self.ledger.balance_of(account, asset)
        allowance = await self.ledger.allowance(account, self.address, asset)
        available = min(balance, allowance)
        if available < amount:
            raise InsufficientBalanceError(
                f"{account} can provide {available} {asset} (balance {balance}, "
                f"allowance {allowance}), needs {amount}",
                required=amount,
                available=available,
                asset=asset,
                account=account,
            )

    async def _refund(self, owner: str, asset0: str, asset1: str, amount0: int, amount1: int) -> None:
        """Return unconsumed amounts and clear the venue allowances."""
        if amount0:
            await self.ledger.transfer(self.address, owner, asset0, amount0)
        if amount1:
            await self.ledger.transfer(self.address, owner, asset1, amount1)
        await self.ledger.approve(self.address, self.liquidity.address, asset0, 0)
        await self.ledger.approve(self.address, self.liquidity.address, asset1, 0)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def close_position(self, position_id: str, caller: str) -> CloseResult:
        """
        Close both legs and return everything to the owner.

        Raises:
            PositionNotFoundError, UnauthorizedOwnerError,
            PositionAlreadyClosedError, PositionBusyError
            PositionNotActiveError: position is partially closed (use resume_close)
            PositionCloseIncompleteError: a leg failed; status is PARTIALLY_CLOSED
        """
        position = self._authorize(position_id, caller)
        if position.status == PositionStatus.PARTIALLY_CLOSED:
            raise PositionNotActiveError(
                f"Position {position_id} is partially closed; use resume_close",
                position_id=position_id,
            )

        async with self._acquire(position_id):
            self._state_machine.transition(position, PositionStatus.CLOSING)
            log_position_event(
                logger, "closing", position_id, position.owner,
                position.base_asset, position.quote_asset,
            )
            return await self._tear_down(position)

    async def resume_close(self, position_id: str, caller: str) -> CloseResult:
        """Finish a partially closed position; only legs still open are touched."""
        position = self._authorize(position_id, caller)
        if position.status != PositionStatus.PARTIALLY_CLOSED:
            raise PositionNotActiveError(
                f"Position {position_id} is {position.status.value}, not partially closed",
                position_id=position_id,
            )

        async with self._acquire(position_id):
            self._state_machine.transition(position, PositionStatus.CLOSING, {"resume": True})
            log_position_event(
                logger, "close_resumed", position_id, position.owner,
                position.base_asset, position.quote_asset, open_legs=position.open_legs,
            )
            return await self._tear_down(position)

    async def _tear_down(self, position: CompositePosition) -> CloseResult:
        totals = _TeardownTotals()
        leg_errors: Dict[str, str] = {}

        try:
            await self._close_open_legs(position, totals, leg_errors)
        except BaseException as e:
            # Interrupted mid-exit (e.g. cancelled); resume_close finishes it
            open_legs = position.open_legs
            self._state_machine.transition(
                position, PositionStatus.PARTIALLY_CLOSED,
                {"open_legs": open_legs, "interrupted": type(e).__name__},
            )
            log_risk_event(
                logger, "close_interrupted", "critical",
                f"Close of {position.position_id} interrupted, open legs {open_legs}",
                position_id=position.position_id,
                error_type=type(e).__name__,
            )
            raise

        if position.open_legs:
            open_legs = position.open_legs
            self._state_machine.transition(
                position, PositionStatus.PARTIALLY_CLOSED, {"open_legs": open_legs}
            )
            log_risk_event(
                logger, "close_incomplete", "critical",
                f"Position {position.position_id} left with open legs {open_legs}",
                position_id=position.position_id,
                errors=leg_errors,
            )
            await self.event_bus.publish(PositionCloseIncomplete(
                position_id=position.position_id,
                owner=position.owner,
                open_legs=open_legs,
                errors=leg_errors,
            ))
            raise PositionCloseIncompleteError(
                f"Position {position.position_id} partially closed, open legs: {open_legs}",
                position_id=position.position_id,
                open_legs=open_legs,
                leg_errors=leg_errors,
            )

        self._state_machine.transition(position, PositionStatus.CLOSED)
        log_position_event(
            logger, "closed", position.position_id, position.owner,
            position.base_asset, position.quote_asset,
            amount0=totals.amount0, amount1=totals.amount1,
            fees0=totals.fees0, fees1=totals.fees1,
        )
        await self.event_bus.publish(PositionClosed(
            position_id=position.position_id,
            owner=position.owner,
            amount0_returned=totals.amount0,
            amount1_returned=totals.amount1,
            fees0=totals.fees0,
            fees1=totals.fees1,
        ))
        return CloseResult(
            position_id=position.position_id,
            amount0_returned=totals.amount0,
            amount1_returned=totals.amount1,
            fees0=totals.fees0,
            fees1=totals.fees1,
            hedge=totals.hedge,
        )

    async def _close_open_legs(
        self,
        position: CompositePosition,
        totals: _TeardownTotals,
        leg_errors: Dict[str, str],
    ) -> None:
        """Attempt every leg still open; a failed leg is recorded, not raised."""
        if not position.yield_leg_closed:
            try:
                await self._close_yield_leg(position, totals)
            except Exception as e:
                leg_errors[Leg.YIELD.value] = str(e)
                logger.error(
                    "yield_leg_close_failed",
                    position_id=position.position_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if not position.hedge_leg_closed:
            try:
                await self._close_hedge_leg(position, totals)
            except Exception as e:
                leg_errors[Leg.HEDGE.value] = str(e)
                logger.error(
                    "hedge_leg_close_failed",
                    position_id=position.position_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _close_yield_leg(self, position: CompositePosition, totals: _TeardownTotals) -> None:
        leg_id = position.yield_leg.leg_id
        async with self.settlement.atomic():
            details = await self.liquidity.details(leg_id)
            amount0, amount1 = 0, 0
            if details.liquidity:
                amount0, amount1 = await self.liquidity.decrease(
                    leg_id, details.liquidity, recipient=position.owner
                )
            fees0, fees1 = await self.liquidity.collect_fees(leg_id, recipient=position.owner)

        position.yield_leg.liquidity = 0
        position.yield_leg_closed = True
        position.fees_collected0 += fees0
        position.fees_collected1 += fees1
        totals.amount0 += amount0
        totals.amount1 += amount1
        totals.fees0 += fees0
        totals.fees1 += fees1

    async def _close_hedge_leg(self, position: CompositePosition, totals: _TeardownTotals) -> None:
        async with self.settlement.atomic():
            # Registered first so the flag is set before any HedgeClosed listener runs
            self.settlement.after_commit(partial(_mark_hedge_leg_closed, position))
            if position.hedge_reserve:
                await self.ledger.transfer(
                    self.address, position.owner, position.quote_asset, position.hedge_reserve
                )
            try:
                totals.hedge = await self.hedge_manager.close_short(
                    position.hedge_position_id, caller=position.owner
                )
            except PositionAlreadyClosedError:
                logger.info(
                    "hedge_already_closed",
                    position_id=position.position_id,
                    hedge_position_id=position.hedge_position_id,
                )

        totals.amount1 += position.hedge_reserve
        if totals.hedge is not None:
            totals.amount0 += totals.hedge.collateral_returned
            totals.amount1 += totals.hedge.shorted_returned

    # ------------------------------------------------------------------
    # Yield leg maintenance
    # ------------------------------------------------------------------

    async def collect_fees(self, position_id: str, caller: str) -> Tuple[int, int]:
        """Collect the yield leg's accrued fees to the owner."""
        position = self._authorize(position_id, caller)
        self._require_active(position)

        async with self._acquire(position_id):
            fees0, fees1 = await self.liquidity.collect_fees(
                position.yield_leg.leg_id, recipient=position.owner
            )
            position.fees_collected0 += fees0
            position.fees_collected1 += fees1

        log_position_event(
            logger, "fees_collected", position_id, position.owner,
            position.base_asset, position.quote_asset, fees0=fees0, fees1=fees1,
        )
        await self.event_bus.publish(FeesCollected(
            position_id=position_id,
            owner=position.owner,
            base_asset=position.base_asset,
            quote_asset=position.quote_asset,
            fees0=fees0,
            fees1=fees1,
        ))
        return fees0, fees1

    async def add_liquidity(
        self,
        position_id: str,
        caller: str,
        amount0: int,
        amount1: int,
    ) -> int:
        """
        Grow the yield leg with a fresh deposit from the owner.

        Unused amounts are refunded. Returns the liquidity added.
        """
        position = self._authorize(position_id, caller)
        self._require_active(position)
        if amount0 < 0 or amount1 < 0 or (amount0 == 0 and amount1 == 0):
            raise InvalidInputError(
                f"Invalid liquidity amounts {amount0}, {amount1}",
                field="amount",
            )

        async with self._acquire(position_id):
            await self._check_funding(position.owner, position.base_asset, amount0)
            await self._check_funding(position.owner, position.quote_asset, amount1)

            price = await self._spot_price(position.base_asset, position.quote_asset)
            expected = liquidity_from_amounts(
                amount0, amount1, price,
                position.yield_leg.range_lower, position.yield_leg.range_upper,
            )
            min_liquidity = expected * (10_000 - self.config.slippage_bps) // 10_000

            async with self.settlement.atomic():
                await self.ledger.transfer_from(
                    self.address, position.owner, self.address, position.base_asset, amount0
                )
                await self.ledger.transfer_from(
                    self.address, position.owner, self.address, position.quote_asset, amount1
                )
                await self.ledger.approve(self.address, self.liquidity.address, position.base_asset, amount0)
                await self.ledger.approve(self.address, self.liquidity.address, position.quote_asset, amount1)
                result = await self.liquidity.increase(
                    position.yield_leg.leg_id,
                    payer=self.address,
                    amount0=amount0,
                    amount1=amount1,
                    min_liquidity=min_liquidity,
                )
                await self._refund(
                    position.owner, position.base_asset, position.quote_asset,
                    amount0 - result.used0, amount1 - result.used1,
                )

            position.deposit0 += result.used0
            position.deposit1 += result.used1
            position.yield_amount0 += result.used0
            position.yield_amount1 += result.used1
            position.yield_leg.liquidity += result.liquidity_added

        log_position_event(
            logger, "liquidity_added", position_id, position.owner,
            position.base_asset, position.quote_asset,
            used0=result.used0, used1=result.used1, liquidity=result.liquidity_added,
        )
        await self.event_bus.publish(LiquidityAdded(
            position_id=position_id,
            owner=position.owner,
            amount0=result.used0,
            amount1=result.used1,
            liquidity=result.liquidity_added,
        ))
        return result.liquidity_added

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_status(self, position_id: str) -> PositionStatusReport:
        """Venue liquidity and fees, hedge health, price and IL estimate."""
        position = self.get_position(position_id)

        details = await self._leg_details(position.yield_leg.leg_id)
        current_price = await self._spot_price(position.base_asset, position.quote_asset)
        hedge = self.hedge_manager.get_position(position.hedge_position_id)
        hedge_health = None if hedge.closed else await self.hedge_manager.account_health()

        return PositionStatusReport(
            position_id=position_id,
            status=position.status,
            liquidity=details.liquidity,
            owed0=details.owed0,
            owed1=details.owed1,
            hedge_closed=hedge.closed,
            hedge_health=hedge_health,
            reference_price=position.reference_price,
            current_price=current_price,
            impermanent_loss_estimate=estimate_impermanent_loss(position.reference_price, current_price),
        )

    def get_position(self, position_id: str) -> CompositePosition:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFoundError(
                f"Position {position_id} not found",
                position_id=position_id,
            )

    def list_positions(self, owner: Optional[str] = None) -> List[CompositePosition]:
        return [
            p for p in self._positions.values()
            if owner is None or p.owner == owner
        ]

    @retry_venue_read
    async def _spot_price(self, base_asset: str, quote_asset: str) -> int:
        return await self.swap.spot_price(base_asset, quote_asset)

    @retry_venue_read
    async def _leg_details(self, leg_id: str) -> LegDetails:
        return await self.liquidity.details(leg_id)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _authorize(self, position_id: str, caller: str) -> CompositePosition:
        position = self.get_position(position_id)
        if caller != position.owner:
            raise UnauthorizedOwnerError(
                f"{caller} does not own position {position_id}",
                caller=caller,
            )
        if position.status == PositionStatus.CLOSED:
            raise PositionAlreadyClosedError(
                f"Position {position_id} is already closed",
                position_id=position_id,
            )
        return position

    def _require_active(self, position: CompositePosition) -> None:
        if position.status != PositionStatus.ACTIVE:
            raise PositionNotActiveError(
                f"Position {position.position_id} is {position.status.value}",
                position_id=position.position_id,
            )

    def _acquire(self, position_id: str) -> asyncio.Lock:
        """Per-position lock, taken without waiting."""
        lock = self._locks.setdefault(position_id, asyncio.Lock())
        if lock.locked():
            raise PositionBusyError(
                f"Position {position_id} has an operation in flight",
                position_id=position_id,
            )
        return lock
