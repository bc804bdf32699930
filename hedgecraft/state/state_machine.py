"""
Lifecycle state machines for hedge and composite positions.

Hedge:
    REQUESTED → COLLATERALIZED → BORROWED → OPEN → REPAYING → WITHDRAWN → CLOSED

Composite position:
    ACTIVE → CLOSING → CLOSED
                 ↓        ↑
          PARTIALLY_CLOSED  (resume: PARTIALLY_CLOSED → CLOSING)

Records are updated in place through their update_state(); nothing here
persists anything.
"""
from typing import Dict, Optional, Set, Union

from hedgecraft.errors import InvalidTransitionError
from hedgecraft.models.common import HedgeState, PositionStatus
from hedgecraft.models.position import CompositePosition, HedgePosition
from hedgecraft.utils.logger import get_logger

logger = get_logger(__name__)

State = Union[HedgeState, PositionStatus]


class LifecycleStateMachine:
    """Validates transitions against a VALID_TRANSITIONS table."""

    VALID_TRANSITIONS: Dict[State, Set[State]] = {}

    def can_transition(self, current: State, target: State) -> bool:
        """
        Check if a state transition is valid.

        Args:
            current: Current state
            target: Target state

        Returns:
            True if transition is valid
        """
        if current not in self.VALID_TRANSITIONS:
            return False
        return target in self.VALID_TRANSITIONS[current]

    def is_terminal(self, state: State) -> bool:
        return not self.VALID_TRANSITIONS.get(state)


class HedgeStateMachine(LifecycleStateMachine):

    VALID_TRANSITIONS = {
        HedgeState.REQUESTED: {HedgeState.COLLATERALIZED},
        HedgeState.COLLATERALIZED: {HedgeState.BORROWED},
        HedgeState.BORROWED: {HedgeState.OPEN},
        HedgeState.OPEN: {HedgeState.REPAYING},
        HedgeState.REPAYING: {HedgeState.WITHDRAWN},
        HedgeState.WITHDRAWN: {HedgeState.CLOSED},
        HedgeState.CLOSED: set(),  # Terminal state
    }

    def transition(
        self,
        record: HedgePosition,
        target: HedgeState,
        metadata: Optional[dict] = None,
    ) -> HedgePosition:
        """
        Move a hedge record to `target`.

        Raises:
            InvalidTransitionError: If transition is not valid
        """
        if not self.can_transition(record.state, target):
            raise InvalidTransitionError(record.state.value, target.value)
        record.update_state(target, metadata)
        logger.debug("hedge_state_transition", position_id=record.position_id, state=target.value)
        return record


class PositionStateMachine(LifecycleStateMachine):

    VALID_TRANSITIONS = {
        PositionStatus.ACTIVE: {PositionStatus.CLOSING},
        PositionStatus.CLOSING: {PositionStatus.CLOSED, PositionStatus.PARTIALLY_CLOSED},
        PositionStatus.PARTIALLY_CLOSED: {PositionStatus.CLOSING},
        PositionStatus.CLOSED: set(),  # Terminal state
    }

    def transition(
        self,
        record: CompositePosition,
        target: PositionStatus,
        metadata: Optional[dict] = None,
    ) -> CompositePosition:
        """
        Move a composite position to `target`.

        Raises:
            InvalidTransitionError: If transition is not valid
        """
        if not self.can_transition(record.status, target):
            raise InvalidTransitionError(record.status.value, target.value)
        record.update_state(target, metadata)
        logger.debug("position_state_transition", position_id=record.position_id, status=target.value)
        return record
