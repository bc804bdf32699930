"""
Shared price table for the paper venues.

Each asset has a WAD price in a common numeraire; pair prices are derived
from it so swap, lending and liquidity venues always agree.
"""
from typing import Dict, Optional

from hedgecraft.core.liquidity_math import WAD, mul_div
from hedgecraft.errors import InvalidInputError, VenueUnavailableError


class PaperMarket:

    def __init__(self, prices: Optional[Dict[str, int]] = None):
        self._prices: Dict[str, int] = {}
        for asset, price in (prices or {}).items():
            self.set_price(asset, price)

    def set_price(self, asset: str, price: int) -> None:
        """Set the WAD numeraire price of one unit of `asset`."""
        if price <= 0:
            raise InvalidInputError(f"Price for {asset} must be positive", field="price")
        self._prices[asset] = price

    def price_of(self, asset: str) -> int:
        try:
            return self._prices[asset]
        except KeyError:
            raise VenueUnavailableError(f"No price for {asset}", venue="market")

    def price(self, base_asset: str, quote_asset: str) -> int:
        """WAD amount of quote per one unit of base."""
        return mul_div(self.price_of(base_asset), WAD, self.price_of(quote_asset))

    def value_of(self, asset: str, amount: int) -> int:
        """Numeraire value of `amount` units of `asset`."""
        return mul_div(amount, self.price_of(asset), WAD)

    def convert(self, token_in: str, token_out: str, amount_in: int) -> int:
        return mul_div(amount_in, self.price_of(token_in), self.price_of(token_out))
