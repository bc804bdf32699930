"""
Paper token ledger.

In-memory balances and allowances with ERC-20 semantics: transfer_from
spends allowance, an allowance of MAX_UINT256 is never decremented.
"""
import copy
from collections import defaultdict
from typing import Dict, Tuple

from hedgecraft.core.liquidity_math import MAX_UINT256
from hedgecraft.errors import InsufficientBalanceError, InvalidInputError
from hedgecraft.utils.logger import get_logger
from hedgecraft.venues.interfaces import TokenLedger

logger = get_logger(__name__)


class PaperLedger(TokenLedger):

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = defaultdict(int)
        self._allowances: Dict[Tuple[str, str, str], int] = defaultdict(int)

    # ------------------------------------------------------------------
    # Test / simulation helpers
    # ------------------------------------------------------------------

    def mint(self, account: str, asset: str, amount: int) -> None:
        """Create tokens out of thin air."""
        if amount < 0:
            raise InvalidInputError("Cannot mint a negative amount", field="amount")
        self._balances[(account, asset)] += amount

    def balance(self, account: str, asset: str) -> int:
        """Synchronous balance lookup."""
        return self._balances.get((account, asset), 0)

    def grant(self, owner: str, spender: str, asset: str, amount: int) -> None:
        """Synchronous approve for setup code."""
        if amount < 0:
            raise InvalidInputError("Allowance cannot be negative", field="amount")
        self._allowances[(owner, spender, asset)] = amount

    def snapshot(self) -> dict:
        return {
            "balances": copy.copy(self._balances),
            "allowances": copy.copy(self._allowances),
        }

    def restore(self, state: dict) -> None:
        self._balances = copy.copy(state["balances"])
        self._allowances = copy.copy(state["allowances"])

    # ------------------------------------------------------------------
    # TokenLedger
    # ------------------------------------------------------------------

    async def balance_of(self, account: str, asset: str) -> int:
        return self.balance(account, asset)

    async def transfer(self, sender: str, to: str, asset: str, amount: int) -> None:
        self._move(sender, to, asset, amount)

    async def approve(self, owner: str, spender: str, asset: str, amount: int) -> None:
        self.grant(owner, spender, asset, amount)

    async def allowance(self, owner: str, spender: str, asset: str) -> int:
        return self._allowances.get((owner, spender, asset), 0)

    async def transfer_from(self, spender: str, owner: str, to: str, asset: str, amount: int) -> None:
        allowed = self._allowances.get((owner, spender, asset), 0)
        if allowed < amount:
            raise InsufficientBalanceError(
                f"Allowance {allowed} of {spender} over {owner} is below {amount} {asset}",
                required=amount,
                available=allowed,
                asset=asset,
                account=owner,
            )
        self._move(owner, to, asset, amount)
        if allowed != MAX_UINT256:
            self._allowances[(owner, spender, asset)] = allowed - amount

    def _move(self, sender: str, to: str, asset: str, amount: int) -> None:
        if amount < 0:
            raise InvalidInputError("Transfer amount cannot be negative", field="amount")
        available = self._balances.get((sender, asset), 0)
        if available < amount:
            raise InsufficientBalanceError(
                f"{sender} holds {available} {asset}, needs {amount}",
                required=amount,
                available=available,
                asset=asset,
                account=sender,
            )
        self._balances[(sender, asset)] = available - amount
        self._balances[(to, asset)] += amount
        logger.debug("ledger_transfer", sender=sender, to=to, asset=asset, amount=amount)
