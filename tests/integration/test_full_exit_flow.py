"""Integration tests for the full position exit flow.

Opens a position, lets fees accrue, moves the price inside the range and
closes: every asset ends up with the owner and no venue keeps a balance
for the position.
"""
import pytest
import pytest_asyncio

from hedgecraft.core.liquidity_math import WAD
from hedgecraft.models.common import HedgeState, PositionStatus
from hedgecraft.models.events import PositionClosed

BASE = "USDC"
QUOTE = "WMATIC"
OWNER = "0xowner"
DEPOSIT = 1_000_000
LOWER = 8 * WAD // 10
UPPER = 125 * WAD // 100


@pytest_asyncio.fixture
async def open_position(venues, position_manager, funded_owner):
    # Pool-side reserves so the liquidity venue can pay out after a price move
    venues.ledger.mint(venues.liquidity.address, BASE, DEPOSIT)
    venues.ledger.mint(venues.liquidity.address, QUOTE, DEPOSIT)
    return await position_manager.open_position(
        OWNER, BASE, QUOTE, DEPOSIT, DEPOSIT, LOWER, UPPER
    )


@pytest.mark.asyncio
async def test_exit_after_fees_and_price_move(
    venues, position_manager, hedge_manager, open_position, event_bus
):
    position = position_manager.get_position(open_position)
    venues.liquidity.accrue_fees(position.yield_leg.leg_id, 1_500, 2_500)
    venues.market.set_price(BASE, 103 * WAD // 100)

    status = await position_manager.get_status(open_position)
    assert status.owed0 == 1_500
    assert status.impermanent_loss_estimate == 1125 * 10 ** 13

    owner_before = venues.ledger.balance(OWNER, BASE), venues.ledger.balance(OWNER, QUOTE)
    result = await position_manager.close_position(open_position, OWNER)

    assert position.status == PositionStatus.CLOSED
    assert position.closed_at is not None
    assert (result.fees0, result.fees1) == (1_500, 2_500)
    assert (position.fees_collected0, position.fees_collected1) == (1_500, 2_500)
    assert venues.ledger.balance(OWNER, BASE) == owner_before[0] + result.amount0_returned + result.fees0
    assert venues.ledger.balance(OWNER, QUOTE) == owner_before[1] + result.amount1_returned + result.fees1

    hedge = hedge_manager.get_position(position.hedge_position_id)
    assert hedge.state == HedgeState.CLOSED
    assert result.hedge.debt_repaid == 131_250
    assert result.hedge.used_close_loan

    # Nothing left behind for this position
    assert await venues.lending.reserve_balances(hedge_manager.address, BASE, QUOTE) == (0, 0)
    for asset in (BASE, QUOTE):
        assert venues.ledger.balance(position_manager.address, asset) == 0
        assert venues.ledger.balance(hedge_manager.address, asset) == 0
    assert (await venues.liquidity.details(position.yield_leg.leg_id)).liquidity == 0

    closed = event_bus.history(PositionClosed)
    assert len(closed) == 1
    assert closed[0].amount0_returned == result.amount0_returned


@pytest.mark.asyncio
async def test_exit_at_entry_price_costs_only_fees_and_slippage(venues, position_manager, open_position):
    """At unchanged prices the owner loses only the loan fees and the swap padding."""
    await position_manager.close_position(open_position, OWNER)

    base = venues.ledger.balance(OWNER, BASE)
    quote = venues.ledger.balance(OWNER, QUOTE)
    assert DEPOSIT - 1_000 < base < DEPOSIT
    assert DEPOSIT <= quote < DEPOSIT + 1_000
    assert base + quote > 2 * DEPOSIT - 1_000


@pytest.mark.asyncio
async def test_positions_close_independently(venues, position_manager, funded_owner):
    first = await position_manager.open_position(OWNER, BASE, QUOTE, 400_000, 400_000, LOWER, UPPER)
    second = await position_manager.open_position(OWNER, BASE, QUOTE, 400_000, 400_000, LOWER, UPPER)

    await position_manager.close_position(first, OWNER)

    assert position_manager.get_position(first).status == PositionStatus.CLOSED
    assert position_manager.get_position(second).status == PositionStatus.ACTIVE
    status = await position_manager.get_status(second)
    assert status.liquidity > 0
    assert not status.hedge_closed

    await position_manager.close_position(second, OWNER)
    assert position_manager.get_position(second).status == PositionStatus.CLOSED
