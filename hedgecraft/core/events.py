"""
Event bus for engine state changes.

Publish/subscribe with in-memory history. Subscribers get a bounded
asyncio.Queue (same backpressure rule as a slow SSE client: the event is
dropped for that subscriber, never for the publisher) or register a
callback. A failing callback is logged and skipped; publishing never raises
because of a consumer.
"""
import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

from hedgecraft.models.events import EngineEvent
from hedgecraft.utils.logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Usage:
        bus = EventBus()
        queue = await bus.subscribe()
        await bus.publish(PositionOpened(...))
        event = await queue.get()
    """

    def __init__(self, queue_size: int = 100, history_limit: Optional[int] = None):
        self._queue_size = queue_size
        self._history_limit = history_limit
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._callbacks: List[Callable[[EngineEvent], Any]] = []
        self._subscriber_counter = 0
        self._seq = 0
        self._history: List[EngineEvent] = []

    @property
    def last_seq(self) -> int:
        return self._seq

    async def subscribe(self) -> asyncio.Queue:
        """Subscribe to all future events. Returns a queue of EngineEvent."""
        self._subscriber_counter += 1
        subscriber_id = f"sub_{self._subscriber_counter}"
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = queue
        logger.debug("subscriber_added", subscriber_id=subscriber_id, total=len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        for sub_id, sub_queue in list(self._subscribers.items()):
            if sub_queue is queue:
                del self._subscribers[sub_id]
                logger.debug("subscriber_removed", subscriber_id=sub_id)
                break

    def add_listener(self, callback: Callable[[EngineEvent], Any]) -> None:
        """Register a sync or async callback invoked for every event."""
        self._callbacks.append(callback)

    async def publish(self, event: EngineEvent) -> EngineEvent:
        """Stamp seq and timestamp, record in history and fan out."""
        self._seq += 1
        stamped = event.model_copy(
            update={"seq": self._seq, "timestamp": datetime.now(timezone.utc)}
        )
        self._history.append(stamped)
        if self._history_limit is not None and len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        for sub_id, queue in self._subscribers.items():
            try:
                queue.put_nowait(stamped)
            except asyncio.QueueFull:
                logger.warning("subscriber_queue_full", subscriber_id=sub_id, seq=stamped.seq)

        for callback in list(self._callbacks):
            try:
                result = callback(stamped)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "listener_failed",
                    type=stamped.type,
                    seq=stamped.seq,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.debug("event_published", type=stamped.type, seq=stamped.seq, position_id=stamped.position_id)
        return stamped

    def history(
        self,
        event_type: Optional[Type[EngineEvent]] = None,
        position_id: Optional[str] = None,
    ) -> List[EngineEvent]:
        """Past events, optionally filtered by class and position."""
        events = self._history
        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        if position_id is not None:
            events = [e for e in events if e.position_id == position_id]
        return list(events)

    def get_subscriber_count(self) -> int:
        return len(self._subscribers)
