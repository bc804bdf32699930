"""
Borrow sizing for the hedge leg.

Decides how much of the shorted asset to borrow against freshly supplied
collateral. The reference behaviour borrows a fixed fraction of the
collateral amount in raw units, which only makes sense when both assets
trade near 1:1. SpotPricedBorrowPolicy values the collateral at the swap
venue's spot price and borrows up to a target loan-to-value instead.
"""
from abc import ABC, abstractmethod

from hedgecraft.config.engine import EngineConfig
from hedgecraft.core.liquidity_math import WAD, mul_div
from hedgecraft.errors import InvalidInputError
from hedgecraft.utils.logger import get_logger
from hedgecraft.utils.retry import retry_venue_read
from hedgecraft.venues.interfaces import SwapVenue

logger = get_logger(__name__)


class BorrowPolicy(ABC):
    """Sizes the borrow in units of the debt asset."""

    @abstractmethod
    async def borrow_amount(
        self,
        collateral_asset: str,
        debt_asset: str,
        collateral_amount: int,
    ) -> int:
        pass


class FixedFractionBorrowPolicy(BorrowPolicy):
    """Borrow `fraction_bps` of the collateral amount (default 50%)."""

    def __init__(self, fraction_bps: int = 5000):
        if not 0 < fraction_bps <= 10_000:
            raise InvalidInputError(
                f"fraction_bps must be in (0, 10000], got {fraction_bps}",
                field="fraction_bps",
            )
        self.fraction_bps = fraction_bps

    async def borrow_amount(
        self,
        collateral_asset: str,
        debt_asset: str,
        collateral_amount: int,
    ) -> int:
        return collateral_amount * self.fraction_bps // 10_000


class SpotPricedBorrowPolicy(BorrowPolicy):
    """
    Borrow to a target LTV, valuing collateral at spot.

    Example (target 50%, 1 collateral unit = 2 debt units):
        1000 collateral → worth 2000 debt units → borrow 1000
    """

    def __init__(self, swap: SwapVenue, target_ltv_bps: int = 5000):
        if not 0 < target_ltv_bps < 10_000:
            raise InvalidInputError(
                f"target_ltv_bps must be in (0, 10000), got {target_ltv_bps}",
                field="target_ltv_bps",
            )
        self.swap = swap
        self.target_ltv_bps = target_ltv_bps

    async def borrow_amount(
        self,
        collateral_asset: str,
        debt_asset: str,
        collateral_amount: int,
    ) -> int:
        price = await self._spot_price(collateral_asset, debt_asset)
        collateral_value = mul_div(collateral_amount, price, WAD)
        amount = collateral_value * self.target_ltv_bps // 10_000
        logger.debug(
            "spot_priced_borrow",
            collateral_asset=collateral_asset,
            debt_asset=debt_asset,
            price=price,
            borrow=amount,
        )
        return amount

    @retry_venue_read
    async def _spot_price(self, base_asset: str, quote_asset: str) -> int:
        return await self.swap.spot_price(base_asset, quote_asset)


def build_borrow_policy(config: EngineConfig, swap: SwapVenue) -> BorrowPolicy:
    """Borrow policy named by the engine config."""
    if config.borrow_policy == "spot_priced":
        return SpotPricedBorrowPolicy(swap, target_ltv_bps=config.target_ltv_bps)
    return FixedFractionBorrowPolicy(fraction_bps=config.borrow_fraction_bps)
