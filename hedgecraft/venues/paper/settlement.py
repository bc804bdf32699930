"""
Paper settlement: all-or-nothing blocks over the paper venues.

Snapshots every registered component on entry and restores them if the
block raises. Blocks nest; an inner failure that the caller handles only
rolls back the inner block. Callbacks registered with after_commit run
when the outermost block commits and are discarded with the block that
registered them on rollback.
"""
import inspect
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Protocol

from hedgecraft.utils.logger import get_logger
from hedgecraft.venues.interfaces import Settlement

logger = get_logger(__name__)


class Snapshottable(Protocol):
    def snapshot(self) -> dict: ...

    def restore(self, state: dict) -> None: ...


class PaperSettlement(Settlement):

    def __init__(self, components: List[Snapshottable]):
        self.components = list(components)
        self.rollbacks = 0
        # One list of pending callbacks per open block, innermost last
        self._frames: List[List[Callable[[], Any]]] = []

    @property
    def depth(self) -> int:
        return len(self._frames)

    def after_commit(self, callback: Callable[[], Any]) -> None:
        if not self._frames:
            raise RuntimeError("after_commit called outside an atomic block")
        self._frames[-1].append(callback)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        snapshots = [component.snapshot() for component in self.components]
        self._frames.append([])
        try:
            yield
        except BaseException:
            self._frames.pop()
            for component, state in zip(self.components, snapshots):
                component.restore(state)
            self.rollbacks += 1
            logger.info("settlement_rolled_back", rollbacks=self.rollbacks, depth=len(self._frames))
            raise

        callbacks = self._frames.pop()
        if self._frames:
            self._frames[-1].extend(callbacks)
            return
        for callback in callbacks:
            result = callback()
            if inspect.isawaitable(result):
                await result
