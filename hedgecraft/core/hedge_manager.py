"""
Hedge Lifecycle Manager.

Opens and closes leveraged shorts funded by a same-transaction loan from the
lending venue.

Open (leverage L, principal P, loan = P × (L − 1)):
1. Pull P of the collateral asset from the payer
2. Request a loan of `loan` collateral units; inside the callback:
   a. Supply P + loan as collateral
   b. Borrow the shorted asset (sized by the BorrowPolicy)
   c. Swap half the borrowed amount back to the collateral asset
   d. Approve the venue for exactly loan + fee; surplus goes to the owner
3. The venue pulls loan + fee back
4. The record is stored and HedgeOpened published once the outermost
   settlement block commits

At 1.0x there is no loan: collateral is supplied and the borrow is taken
directly, and the whole borrowed amount is held.

Close:
1. Read collateral and debt for the manager's account
2. Repay from held shorted units, withdraw collateral to the owner
3. If held units do not cover the debt, a close-side loan in the shorted
   asset funds the repayment and part of the withdrawn collateral is sold
   to pay it back

Every attempt runs inside one Settlement.atomic() block and works on a copy
of the record, so a failure leaves neither venue effects nor record changes.
When the caller wraps open or close in its own atomic block, the record
and the event wait for that block to commit.
"""
import asyncio
import itertools
import time
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from hedgecraft.config.engine import EngineConfig, get_engine_config
from hedgecraft.core.borrow_policy import BorrowPolicy, build_borrow_policy
from hedgecraft.core.events import EventBus
from hedgecraft.core.liquidity_math import WAD, mul_div
from hedgecraft.errors import (
    DeadlineExceededError,
    ErrorCode,
    InsufficientBalanceError,
    InsufficientRepaymentError,
    InvalidAssetsError,
    InvalidInputError,
    LoanRejectedError,
    PositionAlreadyClosedError,
    PositionBusyError,
    PositionNotFoundError,
    UnauthorizedCallbackError,
    UnauthorizedOwnerError,
)
from hedgecraft.models.common import HedgeState, LoanDirection
from hedgecraft.models.events import HedgeClosed, HedgeOpened
from hedgecraft.models.position import HedgePosition, PendingLoan
from hedgecraft.state.state_machine import HedgeStateMachine
from hedgecraft.utils.logger import get_logger, log_hedge_event
from hedgecraft.utils.retry import retry_venue_read
from hedgecraft.venues.interfaces import (
    AccountStatus,
    LendingVenue,
    LoanReceiver,
    Settlement,
    SwapVenue,
    TokenLedger,
)

logger = get_logger(__name__)


@dataclass
class HedgeCloseResult:
    """Result of closing a hedge leg."""

    position_id: str
    debt_repaid: int
    collateral_returned: int
    shorted_returned: int
    close_loan_amount: Optional[int] = None

    @property
    def used_close_loan(self) -> bool:
        return self.close_loan_amount is not None


class HedgeManager(LoanReceiver):
    """
    Owns every HedgePosition record and the lending account behind them.

    Args:
        ledger: Token custody
        lending: Lending venue (collateral, debt, same-transaction loans)
        swap: Swap venue
        settlement: Atomic settlement for venue calls
        config: Engine parameters (leverage bounds, slippage, deadline)
        borrow_policy: Borrow sizing; defaults to the one named in config
        event_bus: Where HedgeOpened / HedgeClosed are published
        address: This manager's account on the ledger and lending venue
        clock: Time source for swap deadlines
    """

    def __init__(
        self,
        ledger: TokenLedger,
        lending: LendingVenue,
        swap: SwapVenue,
        settlement: Settlement,
        config: Optional[EngineConfig] = None,
        borrow_policy: Optional[BorrowPolicy] = None,
        event_bus: Optional[EventBus] = None,
        address: str = "hedge-manager",
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.lending = lending
        self.swap = swap
        self.settlement = settlement
        self.config = config or get_engine_config()
        self.borrow_policy = borrow_policy or build_borrow_policy(self.config, swap)
        self.event_bus = event_bus or EventBus()
        self.address = address
        self.clock = clock

        self._positions: Dict[str, HedgePosition] = {}
        self._pending: Dict[str, PendingLoan] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._ids = itertools.count(1)
        self._state_machine = HedgeStateMachine()

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_short(
        self,
        owner: str,
        collateral_asset: str,
        shorted_asset: str,
        principal_amount: int,
        leverage_factor: Optional[int] = None,
        payer: Optional[str] = None,
    ) -> str:
        """
        Open a leveraged short.

        Args:
            owner: Receives surplus now and collateral on close
            collateral_asset: Asset supplied as collateral
            shorted_asset: Asset borrowed
            principal_amount: Collateral units pulled from the payer
            leverage_factor: WAD leverage, defaults to the configured leverage
            payer: Account funding the principal (defaults to owner); must
                have approved this manager for principal_amount

        Returns:
            Hedge position id
        """
        if leverage_factor is None:
            leverage_factor = self.config.default_leverage_wad
        payer = payer or owner

        self._validate_open(collateral_asset, shorted_asset, principal_amount, leverage_factor)
        await self._check_funding(payer, collateral_asset, principal_amount)

        loan_amount = principal_amount * (leverage_factor - WAD) // WAD
        position_id = f"hedge-{next(self._ids)}"
        record = HedgePosition(
            position_id=position_id,
            owner=owner,
            collateral_asset=collateral_asset,
            shorted_asset=shorted_asset,
            principal_amount=principal_amount,
            leverage_factor=leverage_factor,
            loan_amount=loan_amount,
        )

        log_hedge_event(
            logger, "open_requested", position_id, collateral_asset, shorted_asset,
            principal=principal_amount, leverage_factor=leverage_factor, loan=loan_amount,
        )

        fee = 0
        async with self.settlement.atomic():
            await self.ledger.transfer_from(
                self.address, payer, self.address, collateral_asset, principal_amount
            )

            if loan_amount == 0:
                opened = await self._build_short(record, loan=0, fee=0)
            else:
                request_id = uuid.uuid4().hex
                self._pending[request_id] = PendingLoan(
                    request_id=request_id,
                    position_id=position_id,
                    direction=LoanDirection.OPEN,
                    asset=collateral_asset,
                    amount=loan_amount,
                    record=record,
                )
                try:
                    fee = await self.lending.request_loan(
                        initiator=self.address,
                        receiver=self,
                        asset=collateral_asset,
                        amount=loan_amount,
                        request_id=request_id,
                        context={"direction": LoanDirection.OPEN.value, "position_id": position_id},
                    )
                finally:
                    pending = self._pending.pop(request_id)

                if pending.result is None:
                    raise LoanRejectedError(
                        "Lending venue settled without invoking the loan callback",
                        venue=self.lending.address,
                    )
                opened = pending.result

            self.settlement.after_commit(partial(self._commit_open, opened, fee))

        return position_id

    async def _commit_open(self, opened: HedgePosition, fee: int) -> None:
        self._positions[opened.position_id] = opened

        log_hedge_event(
            logger, "opened", opened.position_id, opened.collateral_asset, opened.shorted_asset,
            collateral=opened.collateral_supplied,
            debt=opened.debt_borrowed,
            shorted_held=opened.shorted_held,
        )
        await self.event_bus.publish(HedgeOpened(
            position_id=opened.position_id,
            owner=opened.owner,
            collateral_asset=opened.collateral_asset,
            shorted_asset=opened.shorted_asset,
            collateral=opened.collateral_supplied,
            debt=opened.debt_borrowed,
            leverage_factor=opened.leverage_factor,
            loan_amount=opened.loan_amount,
            loan_fee=fee,
        ))

    def _validate_open(
        self,
        collateral_asset: str,
        shorted_asset: str,
        principal_amount: int,
        leverage_factor: int,
    ) -> None:
        if not collateral_asset or not shorted_asset:
            raise InvalidAssetsError("Collateral and shorted assets are required", field="asset")
        if collateral_asset == shorted_asset:
            raise InvalidAssetsError(
                f"Collateral and shorted asset are both {collateral_asset}",
                field="shorted_asset",
            )
        if principal_amount <= 0:
            raise InvalidInputError(
                f"Principal must be positive, got {principal_amount}",
                field="principal_amount",
            )
        if not (self.config.min_leverage_wad <= leverage_factor <= self.config.max_leverage_wad):
            raise InvalidInputError(
                f"Leverage {leverage_factor} outside "
                f"[{self.config.min_leverage_wad}, {self.config.max_leverage_wad}]",
                field="leverage_factor",
                code=ErrorCode.INVALID_LEVERAGE,
            )

    async def _check_funding(self, payer: str, asset: str, amount: int) -> None:
        balance = await self.ledger.balance_of(payer, asset)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{payer} holds {balance} {asset}, principal is {amount}",
                required=amount,
                available=balance,
                asset=asset,
                account=payer,
            )
        allowance = await self.ledger.allowance(payer, self.address, asset)
        if allowance < amount:
            raise InsufficientBalanceError(
                f"{payer} approved {allowance} {asset} to the hedge manager, principal is {amount}",
                required=amount,
                available=allowance,
                asset=asset,
                account=payer,
            )

    # ------------------------------------------------------------------
    # Loan callback
    # ------------------------------------------------------------------

    async def on_loan_received(
        self,
        caller: str,
        request_id: str,
        asset: str,
        amount: int,
        fee: int,
        initiator: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Lending venue callback. Only honours the exact request this manager
        registered, once.
        """
        if caller != self.lending.address:
            raise UnauthorizedCallbackError(
                f"Loan callback from {caller}, expected {self.lending.address}",
                caller=caller,
            )

        pending = self._pending.get(request_id)
        if pending is None or pending.consumed:
            raise UnauthorizedCallbackError(
                f"No pending loan request {request_id}",
                caller=caller,
                details={"request_id": request_id},
            )
        if asset != pending.asset or amount != pending.amount or initiator != self.address:
            raise UnauthorizedCallbackError(
                "Loan callback does not match the pending request",
                caller=caller,
                details={
                    "request_id": request_id,
                    "asset": asset,
                    "amount": amount,
                    "initiator": initiator,
                },
            )

        pending.consumed = True

        if pending.direction == LoanDirection.OPEN:
            pending.result = await self._build_short(pending.record, loan=amount, fee=fee)
        else:
            pending.result = await self._unwind_with_loan(pending.record, pending.result, amount, fee)
        return True

    async def _build_short(self, record: HedgePosition, loan: int, fee: int) -> HedgePosition:
        """Collateralize, borrow and (with a loan) fund its repayment."""
        working = record.model_copy(deep=True)
        collateral_asset = working.collateral_asset
        shorted_asset = working.shorted_asset
        collateral_amount = working.principal_amount + loan

        await self.ledger.approve(self.address, self.lending.address, collateral_asset, collateral_amount)
        await self.lending.supply_collateral(self.address, collateral_asset, collateral_amount)
        self._state_machine.transition(working, HedgeState.COLLATERALIZED, {"collateral": collateral_amount})

        borrow_amount = await self.borrow_policy.borrow_amount(
            collateral_asset, shorted_asset, collateral_amount
        )
        if borrow_amount <= 0:
            raise LoanRejectedError(
                f"Borrow policy sized a borrow of {borrow_amount}",
                venue=self.lending.address,
            )
        await self.lending.borrow(self.address, shorted_asset, borrow_amount)
        self._state_machine.transition(working, HedgeState.BORROWED, {"debt": borrow_amount})

        shorted_held = borrow_amount
        if loan > 0:
            owed = loan + fee
            swap_in = borrow_amount // 2
            proceeds = await self._protected_swap(shorted_asset, collateral_asset, swap_in)
            shorted_held -= swap_in

            if proceeds < owed:
                raise InsufficientRepaymentError(
                    f"Swap returned {proceeds} {collateral_asset}, loan repayment needs {owed}",
                    required=owed,
                    available=proceeds,
                    asset=collateral_asset,
                    account=self.address,
                )

            await self.ledger.approve(self.address, self.lending.address, collateral_asset, owed)
            surplus = proceeds - owed
            if surplus:
                await self.ledger.transfer(self.address, working.owner, collateral_asset, surplus)

        working.collateral_supplied = collateral_amount
        working.debt_borrowed = borrow_amount
        working.shorted_held = shorted_held
        self._state_machine.transition(working, HedgeState.OPEN)
        return working

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def close_short(self, position_id: str, caller: str) -> HedgeCloseResult:
        """
        Repay the debt, withdraw collateral and hand everything to the owner.

        Raises:
            PositionNotFoundError: unknown id
            UnauthorizedOwnerError: caller is not the owner
            PositionAlreadyClosedError: already closed (no venue calls made)
            PositionBusyError: another operation on this position is running
        """
        position = self.get_position(position_id)
        if caller != position.owner:
            raise UnauthorizedOwnerError(
                f"{caller} does not own hedge {position_id}",
                caller=caller,
            )
        if position.closed:
            raise PositionAlreadyClosedError(
                f"Hedge {position_id} is already closed",
                position_id=position_id,
            )

        lock = self._locks.setdefault(position_id, asyncio.Lock())
        if lock.locked():
            raise PositionBusyError(
                f"Hedge {position_id} has an operation in flight",
                position_id=position_id,
            )

        async with lock:
            return await self._close(position)

    async def _close(self, position: HedgePosition) -> HedgeCloseResult:
        position_id = position.position_id
        collateral_asset = position.collateral_asset
        shorted_asset = position.shorted_asset

        venue_collateral, venue_debt = await self._read_reserves(collateral_asset, shorted_asset)
        repay = min(venue_debt, position.debt_borrowed)
        withdraw = min(venue_collateral, position.collateral_supplied)

        log_hedge_event(
            logger, "close_requested", position_id, collateral_asset, shorted_asset,
            repay=repay, withdraw=withdraw, shorted_held=position.shorted_held,
        )

        working = position.model_copy(deep=True)
        close_loan_amount = None

        async with self.settlement.atomic():
            self._state_machine.transition(working, HedgeState.REPAYING)

            if position.shorted_held >= repay:
                repaid = await self._repay(shorted_asset, repay)
                self._state_machine.transition(working, HedgeState.WITHDRAWN)
                collateral_returned = await self.lending.withdraw(
                    self.address, collateral_asset, withdraw, working.owner
                )
                shorted_returned = position.shorted_held - repaid
                if shorted_returned:
                    await self.ledger.transfer(self.address, working.owner, shorted_asset, shorted_returned)
            else:
                close_loan_amount = repay - position.shorted_held
                outcome = await self._close_with_loan(working, close_loan_amount, repay, withdraw)
                repaid = outcome["repaid"]
                collateral_returned = outcome["collateral_returned"]
                shorted_returned = outcome["shorted_returned"]

            working.shorted_held = 0
            working.closed = True
            self._state_machine.transition(working, HedgeState.CLOSED)

            result = HedgeCloseResult(
                position_id=position_id,
                debt_repaid=repaid,
                collateral_returned=collateral_returned,
                shorted_returned=shorted_returned,
                close_loan_amount=close_loan_amount,
            )
            self.settlement.after_commit(partial(self._commit_close, working, result))

        return result

    async def _commit_close(self, closed: HedgePosition, result: HedgeCloseResult) -> None:
        self._positions[closed.position_id] = closed

        log_hedge_event(
            logger, "closed", closed.position_id, closed.collateral_asset, closed.shorted_asset,
            debt_repaid=result.debt_repaid,
            collateral_returned=result.collateral_returned,
            shorted_returned=result.shorted_returned,
            close_loan=result.close_loan_amount,
        )
        await self.event_bus.publish(HedgeClosed(
            position_id=closed.position_id,
            owner=closed.owner,
            collateral_asset=closed.collateral_asset,
            shorted_asset=closed.shorted_asset,
            debt_repaid=result.debt_repaid,
            collateral_returned=result.collateral_returned,
            close_loan_amount=result.close_loan_amount,
        ))

    async def _close_with_loan(
        self,
        working: HedgePosition,
        loan_amount: int,
        repay: int,
        withdraw: int,
    ) -> Dict[str, int]:
        request_id = uuid.uuid4().hex
        self._pending[request_id] = PendingLoan(
            request_id=request_id,
            position_id=working.position_id,
            direction=LoanDirection.CLOSE,
            asset=working.shorted_asset,
            amount=loan_amount,
            record=working,
            result={"repay": repay, "withdraw": withdraw},
        )
        try:
            await self.lending.request_loan(
                initiator=self.address,
                receiver=self,
                asset=working.shorted_asset,
                amount=loan_amount,
                request_id=request_id,
                context={"direction": LoanDirection.CLOSE.value, "position_id": working.position_id},
            )
        finally:
            pending = self._pending.pop(request_id)

        if not pending.consumed:
            raise LoanRejectedError(
                "Lending venue settled without invoking the loan callback",
                venue=self.lending.address,
            )
        return pending.result

    async def _unwind_with_loan(
        self,
        working: HedgePosition,
        plan: Dict[str, int],
        amount: int,
        fee: int,
    ) -> Dict[str, int]:
        """Repay with held units plus the loan, then sell collateral to cover loan + fee."""
        collateral_asset = working.collateral_asset
        shorted_asset = working.shorted_asset
        owed = amount + fee

        repaid = await self._repay(shorted_asset, plan["repay"])
        self._state_machine.transition(working, HedgeState.WITHDRAWN)
        withdrawn = await self.lending.withdraw(
            self.address, collateral_asset, plan["withdraw"], self.address
        )

        # Collateral needed to buy back `owed`, padded by the slippage tolerance
        needed = await self.swap.quote(shorted_asset, collateral_asset, owed)
        amount_in = mul_div(needed, 10_000 + self.config.slippage_bps, 10_000, round_up=True)
        if amount_in > withdrawn:
            raise InsufficientRepaymentError(
                f"Withdrawn collateral {withdrawn} cannot fund a close loan of {owed}",
                required=amount_in,
                available=withdrawn,
                asset=collateral_asset,
                account=self.address,
            )

        proceeds = await self._protected_swap(
            collateral_asset, shorted_asset, amount_in, min_amount_out=owed
        )
        await self.ledger.approve(self.address, self.lending.address, shorted_asset, owed)

        shorted_returned = proceeds - owed
        if shorted_returned:
            await self.ledger.transfer(self.address, working.owner, shorted_asset, shorted_returned)
        collateral_returned = withdrawn - amount_in
        if collateral_returned:
            await self.ledger.transfer(self.address, working.owner, collateral_asset, collateral_returned)

        return {
            "repaid": repaid,
            "collateral_returned": collateral_returned,
            "shorted_returned": shorted_returned,
        }

    async def _repay(self, asset: str, amount: int) -> int:
        if amount <= 0:
            return 0
        await self.ledger.approve(self.address, self.lending.address, asset, amount)
        return await self.lending.repay(self.address, asset, amount)

    # ------------------------------------------------------------------
    # Swaps and reads
    # ------------------------------------------------------------------

    async def _protected_swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: Optional[int] = None,
    ) -> int:
        """Swap with a slippage floor and a deadline; never sends a late swap."""
        deadline = self.clock() + self.config.swap_deadline_seconds
        if min_amount_out is None:
            quoted = await self.swap.quote(token_in, token_out, amount_in)
            min_amount_out = self.config.min_amount_out(quoted)

        now = self.clock()
        if now > deadline:
            raise DeadlineExceededError(
                f"Swap deadline {deadline} passed at {now}",
                venue=self.swap.address,
            )

        await self.ledger.approve(self.address, self.swap.address, token_in, amount_in)
        return await self.swap.swap(
            account=self.address,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
            deadline=deadline,
        )

    @retry_venue_read
    async def _read_reserves(self, collateral_asset: str, debt_asset: str) -> Tuple[int, int]:
        return await self.lending.reserve_balances(self.address, collateral_asset, debt_asset)

    @retry_venue_read
    async def account_health(self) -> AccountStatus:
        """Lending account status backing all hedges."""
        return await self.lending.account_status(self.address)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get_position(self, position_id: str) -> HedgePosition:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFoundError(
                f"Hedge {position_id} not found",
                position_id=position_id,
            )

    def list_positions(self, owner: Optional[str] = None) -> List[HedgePosition]:
        return [
            p for p in self._positions.values()
            if owner is None or p.owner == owner
        ]
