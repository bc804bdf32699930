"""
In-memory paper venues.

Deterministic stand-ins for the external venues, used by the tests and the
simulation script. `build_paper_venues()` wires a consistent set.
"""
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from hedgecraft.venues.paper.ledger import PaperLedger
from hedgecraft.venues.paper.lending import PaperLendingVenue
from hedgecraft.venues.paper.liquidity import PaperLiquidityVenue
from hedgecraft.venues.paper.market import PaperMarket
from hedgecraft.venues.paper.settlement import PaperSettlement
from hedgecraft.venues.paper.swap import PaperSwapVenue


@dataclass
class PaperVenues:
    ledger: PaperLedger
    market: PaperMarket
    swap: PaperSwapVenue
    lending: PaperLendingVenue
    liquidity: PaperLiquidityVenue
    settlement: PaperSettlement


def build_paper_venues(
    prices: Optional[Dict[str, int]] = None,
    swap_fee_bps: int = 0,
    ltv_bps: int = 8000,
    clock: Callable[[], float] = time.time,
) -> PaperVenues:
    ledger = PaperLedger()
    market = PaperMarket(prices)
    swap = PaperSwapVenue(ledger, market, fee_bps=swap_fee_bps, clock=clock)
    lending = PaperLendingVenue(ledger, market, ltv_bps=ltv_bps)
    liquidity = PaperLiquidityVenue(ledger, market)
    settlement = PaperSettlement([ledger, lending, liquidity])
    return PaperVenues(
        ledger=ledger,
        market=market,
        swap=swap,
        lending=lending,
        liquidity=liquidity,
        settlement=settlement,
    )


__all__ = [
    "PaperLedger",
    "PaperMarket",
    "PaperSwapVenue",
    "PaperLendingVenue",
    "PaperLiquidityVenue",
    "PaperSettlement",
    "PaperVenues",
    "build_paper_venues",
]
