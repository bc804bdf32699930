"""Integration tests for two-phase close.

When one leg cannot be torn down the position is left PARTIALLY_CLOSED
with the failure recorded, and resume_close() finishes only the legs that
are still open.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from hedgecraft.core.liquidity_math import WAD
from hedgecraft.errors import (
    PositionCloseIncompleteError,
    PositionNotActiveError,
    UnauthorizedOwnerError,
    VenueUnavailableError,
)
from hedgecraft.models.common import PositionStatus
from hedgecraft.models.events import HedgeClosed, PositionCloseIncomplete, PositionClosed

BASE = "USDC"
QUOTE = "WMATIC"
OWNER = "0xowner"
STRANGER = "0xstranger"
DEPOSIT = 1_000_000
LOWER = 8 * WAD // 10
UPPER = 125 * WAD // 100


async def _open(position_manager):
    return await position_manager.open_position(OWNER, BASE, QUOTE, DEPOSIT, DEPOSIT, LOWER, UPPER)


@pytest.mark.asyncio
async def test_hedge_failure_then_resume(venues, position_manager, hedge_manager, funded_owner, event_bus):
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)

    failing = AsyncMock(side_effect=VenueUnavailableError("lending venue down"))
    with patch.object(hedge_manager, "close_short", failing):
        with pytest.raises(PositionCloseIncompleteError) as exc_info:
            await position_manager.close_position(position_id, OWNER)

    assert exc_info.value.open_legs == ["hedge"]
    assert "lending venue down" in exc_info.value.leg_errors["hedge"]
    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.yield_leg_closed
    assert not position.hedge_leg_closed
    # The reserve transfer was rolled back with the failed hedge close
    assert venues.ledger.balance(position_manager.address, QUOTE) == position.hedge_reserve
    assert hedge_manager.get_position(position.hedge_position_id).is_open

    incomplete = event_bus.history(PositionCloseIncomplete)
    assert len(incomplete) == 1
    assert incomplete[0].open_legs == ["hedge"]

    with pytest.raises(PositionNotActiveError):
        await position_manager.close_position(position_id, OWNER)
    with pytest.raises(PositionNotActiveError):
        await position_manager.collect_fees(position_id, OWNER)

    owner_quote = venues.ledger.balance(OWNER, QUOTE)
    result = await position_manager.resume_close(position_id, OWNER)

    assert position.status == PositionStatus.CLOSED
    assert result.fees0 == result.fees1 == 0
    assert result.amount0_returned == result.hedge.collateral_returned
    assert result.amount1_returned == position.hedge_reserve + result.hedge.shorted_returned
    assert venues.ledger.balance(OWNER, QUOTE) == owner_quote + result.amount1_returned
    assert venues.ledger.balance(position_manager.address, QUOTE) == 0
    assert [h["to"] for h in position.state_history] == [
        "closing", "partially_closed", "closing", "closed",
    ]
    assert len(event_bus.history(PositionClosed)) == 1


@pytest.mark.asyncio
async def test_yield_failure_then_resume(venues, position_manager, hedge_manager, funded_owner):
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)
    liquidity = position.yield_leg.liquidity

    failing = AsyncMock(side_effect=VenueUnavailableError("liquidity venue down"))
    with patch.object(venues.liquidity, "decrease", failing):
        with pytest.raises(PositionCloseIncompleteError) as exc_info:
            await position_manager.close_position(position_id, OWNER)

    assert exc_info.value.open_legs == ["yield"]
    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.hedge_leg_closed
    assert position.yield_leg.liquidity == liquidity
    assert hedge_manager.get_position(position.hedge_position_id).closed

    with patch.object(hedge_manager, "close_short", AsyncMock()) as hedge_close:
        result = await position_manager.resume_close(position_id, OWNER)
        hedge_close.assert_not_awaited()

    assert position.status == PositionStatus.CLOSED
    assert result.hedge is None
    assert result.amount0_returned > 0
    assert (await venues.liquidity.details(position.yield_leg.leg_id)).liquidity == 0


@pytest.mark.asyncio
async def test_both_legs_fail(venues, position_manager, hedge_manager, funded_owner):
    position_id = await _open(position_manager)

    with patch.object(venues.liquidity, "decrease", AsyncMock(side_effect=VenueUnavailableError("a"))):
        with patch.object(hedge_manager, "close_short", AsyncMock(side_effect=VenueUnavailableError("b"))):
            with pytest.raises(PositionCloseIncompleteError) as exc_info:
                await position_manager.close_position(position_id, OWNER)

    assert exc_info.value.open_legs == ["yield", "hedge"]
    assert set(exc_info.value.leg_errors) == {"yield", "hedge"}

    result = await position_manager.resume_close(position_id, OWNER)
    assert result.hedge is not None
    assert position_manager.get_position(position_id).status == PositionStatus.CLOSED


@pytest.mark.asyncio
async def test_resume_only_by_owner(position_manager, hedge_manager, funded_owner):
    position_id = await _open(position_manager)
    with patch.object(hedge_manager, "close_short", AsyncMock(side_effect=VenueUnavailableError("down"))):
        with pytest.raises(PositionCloseIncompleteError):
            await position_manager.close_position(position_id, OWNER)

    with pytest.raises(UnauthorizedOwnerError):
        await position_manager.resume_close(position_id, STRANGER)
    assert position_manager.get_position(position_id).status == PositionStatus.PARTIALLY_CLOSED


@pytest.mark.asyncio
async def test_hedge_closed_out_of_band(venues, position_manager, hedge_manager, funded_owner):
    """The owner closed the hedge directly; closing the position still completes."""
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)
    await hedge_manager.close_short(position.hedge_position_id, OWNER)

    result = await position_manager.close_position(position_id, OWNER)

    assert position.status == PositionStatus.CLOSED
    assert result.hedge is None
    assert venues.ledger.balance(position_manager.address, QUOTE) == 0
    assert result.amount1_returned >= position.hedge_reserve


@pytest.mark.asyncio
async def test_raising_hedge_closed_listener(venues, position_manager, hedge_manager, funded_owner, event_bus):
    """A listener error after the hedge close commits does not strand collateral."""
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)

    def explode(event):
        if isinstance(event, HedgeClosed):
            raise RuntimeError("listener bug")

    event_bus.add_listener(explode)

    result = await position_manager.close_position(position_id, OWNER)

    assert position.status == PositionStatus.CLOSED
    assert result.hedge is not None
    assert hedge_manager.get_position(position.hedge_position_id).closed
    account = await venues.lending.account_status(hedge_manager.address)
    assert account.collateral == 0
    assert account.debt == 0
    assert len(event_bus.history(HedgeClosed)) == 1


@pytest.mark.asyncio
async def test_cancelled_yield_close_is_resumable(venues, position_manager, hedge_manager, funded_owner):
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)

    with patch.object(venues.liquidity, "decrease", AsyncMock(side_effect=asyncio.CancelledError)):
        with pytest.raises(asyncio.CancelledError):
            await position_manager.close_position(position_id, OWNER)

    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.open_legs == ["yield", "hedge"]
    assert position.state_history[-1]["metadata"]["interrupted"] == "CancelledError"
    assert hedge_manager.get_position(position.hedge_position_id).is_open

    result = await position_manager.resume_close(position_id, OWNER)

    assert position.status == PositionStatus.CLOSED
    assert result.hedge is not None
    assert (await venues.liquidity.details(position.yield_leg.leg_id)).liquidity == 0


@pytest.mark.asyncio
async def test_cancelled_hedge_close_is_resumable(venues, position_manager, hedge_manager, funded_owner):
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)

    with patch.object(hedge_manager, "close_short", AsyncMock(side_effect=asyncio.CancelledError)):
        with pytest.raises(asyncio.CancelledError):
            await position_manager.close_position(position_id, OWNER)

    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.open_legs == ["hedge"]
    assert venues.ledger.balance(position_manager.address, QUOTE) == position.hedge_reserve

    await position_manager.resume_close(position_id, OWNER)

    assert position.status == PositionStatus.CLOSED
    assert venues.ledger.balance(position_manager.address, QUOTE) == 0


@pytest.mark.asyncio
async def test_cancelled_after_hedge_commit(venues, position_manager, hedge_manager, funded_owner, event_bus):
    """Cancelled while HedgeClosed is delivered: the reserve is released exactly once."""
    position_id = await _open(position_manager)
    position = position_manager.get_position(position_id)
    cancelled = []

    async def cancel_once(event):
        if isinstance(event, HedgeClosed) and not cancelled:
            cancelled.append(event.seq)
            raise asyncio.CancelledError

    event_bus.add_listener(cancel_once)

    with pytest.raises(asyncio.CancelledError):
        await position_manager.close_position(position_id, OWNER)

    assert position.status == PositionStatus.PARTIALLY_CLOSED
    assert position.hedge_leg_closed
    assert position.open_legs == []
    assert hedge_manager.get_position(position.hedge_position_id).closed
    assert venues.ledger.balance(position_manager.address, QUOTE) == 0
    owner_quote = venues.ledger.balance(OWNER, QUOTE)

    with patch.object(hedge_manager, "close_short", AsyncMock()) as hedge_close:
        await position_manager.resume_close(position_id, OWNER)
        hedge_close.assert_not_awaited()

    assert position.status == PositionStatus.CLOSED
    assert venues.ledger.balance(OWNER, QUOTE) == owner_quote
