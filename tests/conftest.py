"""
Shared fixtures: a consistent set of paper venues and the two managers.

Prices default to 1:1 and the hedge runs at 1.25x so the reference
fixed-fraction borrow policy can fund the loan repayment.
"""
from decimal import Decimal

import pytest

from hedgecraft.config.engine import EngineConfig
from hedgecraft.core.events import EventBus
from hedgecraft.core.hedge_manager import HedgeManager
from hedgecraft.core.liquidity_math import WAD
from hedgecraft.core.position_manager import PositionManager
from hedgecraft.venues.paper import build_paper_venues

BASE = "USDC"
QUOTE = "WMATIC"
OWNER = "0xowner"
STRANGER = "0xstranger"
SEED = 10 ** 15

RANGE_LOWER = 8 * WAD // 10
RANGE_UPPER = 125 * WAD // 100


class FakeClock:
    """Settable time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine_config():
    """Engine config used across the suite (1.25x hedge, 1000 minimum)."""
    return EngineConfig(default_leverage=Decimal("1.25"), min_deposit=1000)


@pytest.fixture
def venues(clock):
    """Paper venues with seeded lending pool, router and liquidity reserves."""
    venues = build_paper_venues(prices={BASE: WAD, QUOTE: WAD}, clock=clock)
    for account in (venues.lending.address, venues.swap.address):
        venues.ledger.mint(account, BASE, SEED)
        venues.ledger.mint(account, QUOTE, SEED)
    return venues


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def hedge_manager(venues, engine_config, event_bus, clock):
    return HedgeManager(
        venues.ledger,
        venues.lending,
        venues.swap,
        venues.settlement,
        config=engine_config,
        event_bus=event_bus,
        clock=clock,
    )


@pytest.fixture
def position_manager(venues, hedge_manager, engine_config, event_bus):
    return PositionManager(
        venues.ledger,
        venues.liquidity,
        venues.swap,
        hedge_manager,
        venues.settlement,
        config=engine_config,
        event_bus=event_bus,
    )


@pytest.fixture
def funded_owner(venues, position_manager):
    """OWNER holds and has approved 1,000,000 of each asset to the position manager."""
    amount = 1_000_000
    for asset in (BASE, QUOTE):
        venues.ledger.mint(OWNER, asset, amount)
        venues.ledger.grant(OWNER, position_manager.address, asset, amount)
    return OWNER
