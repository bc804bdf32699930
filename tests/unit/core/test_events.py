"""Tests for the event bus."""
import asyncio

import pytest

from hedgecraft.core.events import EventBus
from hedgecraft.models.events import FeesCollected, HedgeOpened, PositionOpened


def _fees_event(position_id="0xowner:1", fees0=1, fees1=2):
    return FeesCollected(
        position_id=position_id,
        owner="0xowner",
        base_asset="USDC",
        quote_asset="WMATIC",
        fees0=fees0,
        fees1=fees1,
    )


class TestEventBus:
    """Publish/subscribe and history."""

    @pytest.mark.asyncio
    async def test_seq_strictly_increasing(self):
        bus = EventBus()

        first = await bus.publish(_fees_event())
        second = await bus.publish(_fees_event())
        third = await bus.publish(_fees_event(position_id="0xowner:2"))

        assert [first.seq, second.seq, third.seq] == [1, 2, 3]
        assert bus.last_seq == 3
        assert first.timestamp <= second.timestamp <= third.timestamp

    @pytest.mark.asyncio
    async def test_queue_subscriber_receives_events(self):
        bus = EventBus()
        queue = await bus.subscribe()

        published = await bus.publish(_fees_event())
        received = await asyncio.wait_for(queue.get(), timeout=1)

        assert received == published
        assert received.type == "fees_collected"

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        queue = await bus.subscribe()
        assert bus.get_subscriber_count() == 1

        await bus.unsubscribe(queue)
        await bus.publish(_fees_event())

        assert bus.get_subscriber_count() == 0
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_full_queue_drops_for_slow_subscriber_only(self):
        bus = EventBus(queue_size=1)
        slow = await bus.subscribe()

        await bus.publish(_fees_event())
        await bus.publish(_fees_event())

        assert slow.qsize() == 1
        assert len(bus.history()) == 2

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self):
        bus = EventBus()
        seen_sync = []
        seen_async = []

        async def async_listener(event):
            seen_async.append(event.seq)

        bus.add_listener(lambda event: seen_sync.append(event.seq))
        bus.add_listener(async_listener)

        await bus.publish(_fees_event())

        assert seen_sync == [1]
        assert seen_async == [1]

    @pytest.mark.asyncio
    async def test_failing_listener_is_skipped(self):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise ValueError("listener bug")

        bus.add_listener(lambda event: 1 / 0)
        bus.add_listener(broken)
        bus.add_listener(lambda event: seen.append(event.seq))

        stamped = await bus.publish(_fees_event())

        assert stamped.seq == 1
        assert seen == [1]
        assert len(bus.history()) == 1

    @pytest.mark.asyncio
    async def test_cancellation_in_listener_propagates(self):
        bus = EventBus()

        async def cancelled(event):
            raise asyncio.CancelledError

        bus.add_listener(cancelled)

        with pytest.raises(asyncio.CancelledError):
            await bus.publish(_fees_event())

    @pytest.mark.asyncio
    async def test_history_filters(self):
        bus = EventBus()
        await bus.publish(_fees_event(position_id="a"))
        await bus.publish(_fees_event(position_id="b"))
        await bus.publish(HedgeOpened(
            position_id="hedge-1",
            owner="0xowner",
            collateral_asset="USDC",
            shorted_asset="WMATIC",
            collateral=1250,
            debt=625,
            leverage_factor=125 * 10 ** 16,
            loan_amount=250,
        ))

        assert len(bus.history()) == 3
        assert len(bus.history(FeesCollected)) == 2
        assert [e.position_id for e in bus.history(position_id="b")] == ["b"]
        assert bus.history(PositionOpened) == []

    @pytest.mark.asyncio
    async def test_history_limit(self):
        bus = EventBus(history_limit=2)
        for _ in range(5):
            await bus.publish(_fees_event())

        assert [e.seq for e in bus.history()] == [4, 5]

    def test_event_serializes(self):
        payload = _fees_event().to_dict()

        assert payload["type"] == "fees_collected"
        assert payload["fees0"] == 1
        assert isinstance(payload["timestamp"], str)
