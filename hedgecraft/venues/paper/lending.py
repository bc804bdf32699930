"""
Paper lending pool.

Per-account collateral and debt by asset, valued through the shared
PaperMarket. Borrows are limited by LTV; withdrawals must keep the health
factor at or above 1.0. Same-transaction loans charge a fee (5 bps by
default, rounded up) and are pulled back through the receiver's allowance.
"""
import copy
from collections import defaultdict
from typing import Any, Dict, Optional, Tuple

from hedgecraft.core.liquidity_math import WAD, mul_div
from hedgecraft.errors import (
    InsufficientBalanceError,
    InsufficientLiquidityError,
    InvalidInputError,
    LoanRejectedError,
)
from hedgecraft.utils.logger import get_logger
from hedgecraft.venues.interfaces import AccountStatus, LendingVenue, LoanReceiver
from hedgecraft.venues.paper.ledger import PaperLedger
from hedgecraft.venues.paper.market import PaperMarket

logger = get_logger(__name__)


class PaperLendingVenue(LendingVenue):

    def __init__(
        self,
        ledger: PaperLedger,
        market: PaperMarket,
        ltv_bps: int = 8000,
        liquidation_threshold_bps: int = 8500,
        loan_fee_bps: int = 5,
        address: str = "paper-lending-pool",
    ):
        self.ledger = ledger
        self.market = market
        self.ltv_bps = ltv_bps
        self.liquidation_threshold_bps = liquidation_threshold_bps
        self.loan_fee_bps = loan_fee_bps
        self.address = address
        self._collateral: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._debt: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def snapshot(self) -> dict:
        return {
            "collateral": {a: dict(v) for a, v in self._collateral.items()},
            "debt": {a: dict(v) for a, v in self._debt.items()},
        }

    def restore(self, state: dict) -> None:
        self._collateral = defaultdict(lambda: defaultdict(int))
        self._debt = defaultdict(lambda: defaultdict(int))
        for account, assets in copy.deepcopy(state["collateral"]).items():
            self._collateral[account].update(assets)
        for account, assets in copy.deepcopy(state["debt"]).items():
            self._debt[account].update(assets)

    # ------------------------------------------------------------------
    # Same-transaction loans
    # ------------------------------------------------------------------

    def loan_fee(self, amount: int) -> int:
        return mul_div(amount, self.loan_fee_bps, 10_000, round_up=True)

    async def request_loan(
        self,
        initiator: str,
        receiver: LoanReceiver,
        asset: str,
        amount: int,
        request_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        if amount <= 0:
            raise InvalidInputError("Loan amount must be positive", field="amount")

        available = self.ledger.balance(self.address, asset)
        if available < amount:
            raise LoanRejectedError(
                f"Pool holds {available} {asset}, loan of {amount} requested",
                venue=self.address,
            )

        fee = self.loan_fee(amount)
        await self.ledger.transfer(self.address, receiver.address, asset, amount)

        accepted = await receiver.on_loan_received(
            caller=self.address,
            request_id=request_id,
            asset=asset,
            amount=amount,
            fee=fee,
            initiator=initiator,
            context=context,
        )
        if not accepted:
            raise LoanRejectedError("Receiver declined the loan", venue=self.address)

        try:
            await self.ledger.transfer_from(
                self.address, receiver.address, self.address, asset, amount + fee
            )
        except InsufficientBalanceError as e:
            raise LoanRejectedError(
                f"Loan repayment of {amount + fee} {asset} not available",
                venue=self.address,
                details=e.details,
            ) from e

        logger.info("paper_loan_settled", asset=asset, amount=amount, fee=fee, request_id=request_id)
        return fee

    # ------------------------------------------------------------------
    # Collateral and debt
    # ------------------------------------------------------------------

    async def supply_collateral(self, account: str, asset: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidInputError("Collateral amount must be positive", field="amount")
        await self.ledger.transfer_from(self.address, account, self.address, asset, amount)
        self._collateral[account][asset] += amount

    async def borrow(self, account: str, asset: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidInputError("Borrow amount must be positive", field="amount")

        status = await self.account_status(account)
        requested_value = self.market.value_of(asset, amount)
        if requested_value > status.available_to_borrow:
            raise LoanRejectedError(
                f"Borrow of {amount} {asset} exceeds available {status.available_to_borrow}",
                venue=self.address,
                details={"requested_value": requested_value},
            )

        inventory = self.ledger.balance(self.address, asset)
        if inventory < amount:
            raise InsufficientLiquidityError(
                f"Pool holds {inventory} {asset}, borrow of {amount} requested",
                venue=self.address,
            )

        await self.ledger.transfer(self.address, account, asset, amount)
        self._debt[account][asset] += amount

    async def repay(self, account: str, asset: str, amount: int) -> int:
        repaid = min(amount, self._debt[account][asset])
        if repaid <= 0:
            return 0
        await self.ledger.transfer_from(self.address, account, self.address, asset, repaid)
        self._debt[account][asset] -= repaid
        return repaid

    async def withdraw(self, account: str, asset: str, amount: int, to: str) -> int:
        withdrawn = min(amount, self._collateral[account][asset])
        if withdrawn <= 0:
            return 0

        self._collateral[account][asset] -= withdrawn
        debt_value = self._debt_value(account)
        if debt_value and self._threshold_value(account) < debt_value:
            self._collateral[account][asset] += withdrawn
            raise LoanRejectedError(
                f"Withdrawal of {withdrawn} {asset} would leave {account} liquidatable",
                venue=self.address,
            )

        await self.ledger.transfer(self.address, to, asset, withdrawn)
        return withdrawn

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def account_status(self, account: str) -> AccountStatus:
        collateral_value = self._collateral_value(account)
        debt_value = self._debt_value(account)
        capacity = collateral_value * self.ltv_bps // 10_000
        threshold_value = self._threshold_value(account)

        return AccountStatus(
            collateral=collateral_value,
            debt=debt_value,
            available_to_borrow=max(0, capacity - debt_value),
            liquidation_threshold=self.liquidation_threshold_bps,
            ltv=self.ltv_bps,
            health_factor=mul_div(threshold_value, WAD, debt_value) if debt_value else None,
        )

    async def reserve_balances(
        self,
        account: str,
        collateral_asset: str,
        debt_asset: str,
    ) -> Tuple[int, int]:
        return (
            self._collateral.get(account, {}).get(collateral_asset, 0),
            self._debt.get(account, {}).get(debt_asset, 0),
        )

    def _collateral_value(self, account: str) -> int:
        return sum(
            self.market.value_of(asset, amount)
            for asset, amount in self._collateral.get(account, {}).items()
            if amount
        )

    def _debt_value(self, account: str) -> int:
        return sum(
            self.market.value_of(asset, amount)
            for asset, amount in self._debt.get(account, {}).items()
            if amount
        )

    def _threshold_value(self, account: str) -> int:
        return self._collateral_value(account) * self.liquidation_threshold_bps // 10_000
