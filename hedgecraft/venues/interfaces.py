"""
Abstract venue interfaces.

The engine only talks to these. Production adapters wrap real protocols;
hedgecraft.venues.paper provides deterministic in-memory versions.

All amounts are integer base units, all prices WAD (token_out per token_in
for swaps, quote per base elsewhere).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Callable, Dict, Optional, Tuple


@dataclass(frozen=True)
class MintResult:
    """New liquidity position."""
    leg_id: str
    liquidity: int
    used0: int
    used1: int


@dataclass(frozen=True)
class IncreaseResult:
    """Liquidity added to an existing position."""
    liquidity_added: int
    used0: int
    used1: int


@dataclass(frozen=True)
class LegDetails:
    """Current state of a liquidity position."""
    leg_id: str
    liquidity: int
    owed0: int
    owed1: int
    fee_tier: int = 0


@dataclass(frozen=True)
class AccountStatus:
    """
    Lending account summary.

    collateral/debt/available_to_borrow are valued in the venue's numeraire.
    liquidation_threshold and ltv are basis points. health_factor is WAD
    (< 1e18 means liquidatable); an account with no debt reports None.
    """
    collateral: int
    debt: int
    available_to_borrow: int
    liquidation_threshold: int
    ltv: int
    health_factor: Optional[int]


class TokenLedger(ABC):
    """ERC-20-like custody of balances and allowances."""

    @abstractmethod
    async def balance_of(self, account: str, asset: str) -> int:
        pass

    @abstractmethod
    async def transfer(self, sender: str, to: str, asset: str, amount: int) -> None:
        pass

    @abstractmethod
    async def approve(self, owner: str, spender: str, asset: str, amount: int) -> None:
        """Set (not add to) the spender's allowance."""
        pass

    @abstractmethod
    async def allowance(self, owner: str, spender: str, asset: str) -> int:
        pass

    @abstractmethod
    async def transfer_from(self, spender: str, owner: str, to: str, asset: str, amount: int) -> None:
        """Move `amount` from owner to `to`, spending the spender's allowance."""
        pass


class LiquidityVenue(ABC):
    """Concentrated-liquidity position manager."""

    address: str

    @abstractmethod
    async def open(
        self,
        payer: str,
        owner: str,
        base_asset: str,
        quote_asset: str,
        amount0: int,
        amount1: int,
        price_lower: int,
        price_upper: int,
        min_liquidity: int = 0,
        fee_tier: int = 3000,
    ) -> MintResult:
        """
        Mint a position owned by `owner`, pulling tokens from `payer`.

        fee_tier selects the pool (hundredths of a bip, 3000 == 0.30%).
        """
        pass

    @abstractmethod
    async def increase(
        self,
        leg_id: str,
        payer: str,
        amount0: int,
        amount1: int,
        min_liquidity: int = 0,
    ) -> IncreaseResult:
        pass

    @abstractmethod
    async def decrease(self, leg_id: str, liquidity: int, recipient: str) -> Tuple[int, int]:
        """Burn liquidity and send the underlying tokens to recipient."""
        pass

    @abstractmethod
    async def collect_fees(self, leg_id: str, recipient: str) -> Tuple[int, int]:
        pass

    @abstractmethod
    async def details(self, leg_id: str) -> LegDetails:
        pass


class LoanReceiver(ABC):
    """Callback contract for same-transaction loans."""

    address: str

    @abstractmethod
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
        Called by the lending venue after the loan amount was transferred.

        The receiver must approve the venue for amount + fee before
        returning; the venue pulls it back immediately afterwards.
        """
        pass


class LendingVenue(ABC):
    """Lending pool with same-transaction loans."""

    address: str

    @abstractmethod
    async def request_loan(
        self,
        initiator: str,
        receiver: LoanReceiver,
        asset: str,
        amount: int,
        request_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Lend, call back the receiver, pull amount + fee. Returns the fee."""
        pass

    @abstractmethod
    def loan_fee(self, amount: int) -> int:
        pass

    @abstractmethod
    async def supply_collateral(self, account: str, asset: str, amount: int) -> None:
        pass

    @abstractmethod
    async def borrow(self, account: str, asset: str, amount: int) -> None:
        pass

    @abstractmethod
    async def repay(self, account: str, asset: str, amount: int) -> int:
        """Repay up to `amount` of debt. Returns the amount actually repaid."""
        pass

    @abstractmethod
    async def withdraw(self, account: str, asset: str, amount: int, to: str) -> int:
        """Withdraw up to `amount` of collateral to `to`. Returns the amount withdrawn."""
        pass

    @abstractmethod
    async def account_status(self, account: str) -> AccountStatus:
        pass

    @abstractmethod
    async def reserve_balances(
        self,
        account: str,
        collateral_asset: str,
        debt_asset: str,
    ) -> Tuple[int, int]:
        """(collateral supplied in collateral_asset, debt owed in debt_asset)."""
        pass


class SwapVenue(ABC):
    """Swap router."""

    address: str

    @abstractmethod
    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        pass

    @abstractmethod
    async def swap(
        self,
        account: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        deadline: float,
        recipient: Optional[str] = None,
    ) -> int:
        """Swap exact input. Raises SlippageExceededError / DeadlineExceededError."""
        pass

    @abstractmethod
    async def spot_price(self, base_asset: str, quote_asset: str) -> int:
        """WAD price of one base unit in quote units."""
        pass


class Settlement(ABC):
    """Groups venue calls into one all-or-nothing step."""

    @abstractmethod
    def atomic(self) -> AsyncContextManager[None]:
        """
        Everything inside the block applies, or nothing does.

        Usage:
            async with settlement.atomic():
                await ledger.transfer_from(...)
                await venue.open(...)
        """
        pass

    @abstractmethod
    def after_commit(self, callback: Callable[[], Any]) -> None:
        """
        Defer `callback` until the outermost atomic block commits.

        Must be called inside atomic(). Sync or async callbacks are accepted;
        a rollback of the registering block discards them.
        """
        pass
