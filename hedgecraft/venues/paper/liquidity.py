"""
Paper concentrated-liquidity venue.

Positions are priced off the shared PaperMarket with the same math the
engine uses for sizing. Fees never accrue on their own; call accrue_fees()
to simulate trading volume.
"""
import copy
import itertools
from dataclasses import dataclass
from typing import Dict, Tuple

from hedgecraft.core.liquidity_math import amounts_from_liquidity, liquidity_from_amounts
from hedgecraft.errors import (
    InsufficientLiquidityError,
    InvalidInputError,
    PositionNotFoundError,
    SlippageExceededError,
)
from hedgecraft.utils.logger import get_logger
from hedgecraft.venues.interfaces import IncreaseResult, LegDetails, LiquidityVenue, MintResult
from hedgecraft.venues.paper.ledger import PaperLedger
from hedgecraft.venues.paper.market import PaperMarket

logger = get_logger(__name__)

FEE_TIERS = (100, 500, 3000, 10_000)


@dataclass
class _PaperLeg:
    owner: str
    base_asset: str
    quote_asset: str
    price_lower: int
    price_upper: int
    fee_tier: int
    liquidity: int = 0
    owed0: int = 0
    owed1: int = 0


class PaperLiquidityVenue(LiquidityVenue):

    def __init__(
        self,
        ledger: PaperLedger,
        market: PaperMarket,
        address: str = "paper-liquidity-manager",
    ):
        self.ledger = ledger
        self.market = market
        self.address = address
        self._legs: Dict[str, _PaperLeg] = {}
        self._ids = itertools.count(1)

    def snapshot(self) -> dict:
        return {"legs": copy.deepcopy(self._legs)}

    def restore(self, state: dict) -> None:
        self._legs = copy.deepcopy(state["legs"])

    def accrue_fees(self, leg_id: str, fees0: int, fees1: int) -> None:
        """Credit trading fees to a position (mints the tokens to the venue)."""
        leg = self._get(leg_id)
        self.ledger.mint(self.address, leg.base_asset, fees0)
        self.ledger.mint(self.address, leg.quote_asset, fees1)
        leg.owed0 += fees0
        leg.owed1 += fees1

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
        if fee_tier not in FEE_TIERS:
            raise InvalidInputError(
                f"No pool for fee tier {fee_tier}, supported: {FEE_TIERS}",
                field="fee_tier",
            )
        leg = _PaperLeg(
            owner=owner,
            base_asset=base_asset,
            quote_asset=quote_asset,
            price_lower=price_lower,
            price_upper=price_upper,
            fee_tier=fee_tier,
        )
        liquidity, used0, used1 = await self._deposit(leg, payer, amount0, amount1, min_liquidity)

        leg_id = f"paper-leg-{next(self._ids)}"
        leg.liquidity = liquidity
        self._legs[leg_id] = leg

        logger.info(
            "paper_leg_opened", leg_id=leg_id, owner=owner, liquidity=liquidity, fee_tier=fee_tier,
        )
        return MintResult(leg_id=leg_id, liquidity=liquidity, used0=used0, used1=used1)

    async def increase(
        self,
        leg_id: str,
        payer: str,
        amount0: int,
        amount1: int,
        min_liquidity: int = 0,
    ) -> IncreaseResult:
        leg = self._get(leg_id)
        liquidity, used0, used1 = await self._deposit(leg, payer, amount0, amount1, min_liquidity)
        leg.liquidity += liquidity
        return IncreaseResult(liquidity_added=liquidity, used0=used0, used1=used1)

    async def decrease(self, leg_id: str, liquidity: int, recipient: str) -> Tuple[int, int]:
        leg = self._get(leg_id)
        if liquidity < 0 or liquidity > leg.liquidity:
            raise InvalidInputError(
                f"Cannot remove {liquidity} of {leg.liquidity} liquidity",
                field="liquidity",
            )
        if liquidity == 0:
            return 0, 0

        price = self.market.price(leg.base_asset, leg.quote_asset)
        amount0, amount1 = amounts_from_liquidity(
            liquidity, price, leg.price_lower, leg.price_upper
        )
        leg.liquidity -= liquidity

        await self.ledger.transfer(self.address, recipient, leg.base_asset, amount0)
        await self.ledger.transfer(self.address, recipient, leg.quote_asset, amount1)
        return amount0, amount1

    async def collect_fees(self, leg_id: str, recipient: str) -> Tuple[int, int]:
        leg = self._get(leg_id)
        fees0, fees1 = leg.owed0, leg.owed1
        leg.owed0 = 0
        leg.owed1 = 0
        await self.ledger.transfer(self.address, recipient, leg.base_asset, fees0)
        await self.ledger.transfer(self.address, recipient, leg.quote_asset, fees1)
        return fees0, fees1

    async def details(self, leg_id: str) -> LegDetails:
        leg = self._get(leg_id)
        return LegDetails(
            leg_id=leg_id,
            liquidity=leg.liquidity,
            owed0=leg.owed0,
            owed1=leg.owed1,
            fee_tier=leg.fee_tier,
        )

    async def _deposit(
        self,
        leg: _PaperLeg,
        payer: str,
        amount0: int,
        amount1: int,
        min_liquidity: int,
    ) -> Tuple[int, int, int]:
        price = self.market.price(leg.base_asset, leg.quote_asset)
        liquidity = liquidity_from_amounts(
            amount0, amount1, price, leg.price_lower, leg.price_upper
        )
        if liquidity == 0:
            raise InsufficientLiquidityError("Deposit too small to mint liquidity", venue=self.address)
        if liquidity < min_liquidity:
            raise SlippageExceededError(
                f"Minted liquidity {liquidity} below minimum {min_liquidity}",
                venue=self.address,
            )

        used0, used1 = amounts_from_liquidity(
            liquidity, price, leg.price_lower, leg.price_upper, round_up=True
        )
        # Rounding up can overshoot the offered amount by one unit
        used0 = min(used0, amount0)
        used1 = min(used1, amount1)

        await self.ledger.transfer_from(self.address, payer, self.address, leg.base_asset, used0)
        await self.ledger.transfer_from(self.address, payer, self.address, leg.quote_asset, used1)
        return liquidity, used0, used1

    def _get(self, leg_id: str) -> _PaperLeg:
        try:
            return self._legs[leg_id]
        except KeyError:
            raise PositionNotFoundError(f"Unknown liquidity position {leg_id}", position_id=leg_id)
