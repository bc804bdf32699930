"""
Paper swap router.

Fills at the market price less a flat fee, out of its own token inventory
(seed it with PaperLedger.mint). Late swaps and fills below min_amount_out
are rejected like an on-chain router would revert.
"""
import time
from typing import Callable, Optional

from hedgecraft.errors import (
    DeadlineExceededError,
    InsufficientLiquidityError,
    InvalidInputError,
    SlippageExceededError,
)
from hedgecraft.utils.logger import get_logger
from hedgecraft.venues.interfaces import SwapVenue
from hedgecraft.venues.paper.ledger import PaperLedger
from hedgecraft.venues.paper.market import PaperMarket

logger = get_logger(__name__)


class PaperSwapVenue(SwapVenue):

    def __init__(
        self,
        ledger: PaperLedger,
        market: PaperMarket,
        fee_bps: int = 0,
        clock: Callable[[], float] = time.time,
        address: str = "paper-swap-router",
    ):
        self.ledger = ledger
        self.market = market
        self.fee_bps = fee_bps
        self.clock = clock
        self.address = address

    async def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        if amount_in < 0:
            raise InvalidInputError("amount_in cannot be negative", field="amount_in")
        gross = self.market.convert(token_in, token_out, amount_in)
        return gross * (10_000 - self.fee_bps) // 10_000

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
        now = self.clock()
        if now > deadline:
            raise DeadlineExceededError(
                f"Swap deadline {deadline} passed at {now}",
                venue=self.address,
            )

        amount_out = await self.quote(token_in, token_out, amount_in)
        if amount_out < min_amount_out:
            raise SlippageExceededError(
                f"Swap output {amount_out} below minimum {min_amount_out}",
                venue=self.address,
                details={"amount_out": amount_out, "min_amount_out": min_amount_out},
            )

        inventory = self.ledger.balance(self.address, token_out)
        if inventory < amount_out:
            raise InsufficientLiquidityError(
                f"Router holds {inventory} {token_out}, needs {amount_out}",
                venue=self.address,
            )

        await self.ledger.transfer_from(self.address, account, self.address, token_in, amount_in)
        await self.ledger.transfer(self.address, recipient or account, token_out, amount_out)

        logger.debug(
            "paper_swap",
            account=account,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
        )
        return amount_out

    async def spot_price(self, base_asset: str, quote_asset: str) -> int:
        return self.market.price(base_asset, quote_asset)
