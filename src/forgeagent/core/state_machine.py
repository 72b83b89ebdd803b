"""
Execution lifecycle transitions.

    running --complete--> completed
    running --fail------> failed
    running --pause-----> paused
    paused  --resume----> running
    (any)   --cancel----> failed
"""

from dataclasses import dataclass
from enum import Enum

from ..storage.models import ExecutionStatus
from .errors import InvalidTransitionError


class ExecutionEvent(str, Enum):
    COMPLETE = "complete"
    FAIL = "fail"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition:
    """A legal move; `from_state=None` matches every state."""

    from_state: ExecutionStatus | None
    to_state: ExecutionStatus
    event: ExecutionEvent

    def matches(self, current: ExecutionStatus, event: ExecutionEvent) -> bool:
        return self.event == event and (self.from_state is None or self.from_state == current)


TRANSITIONS: tuple[Transition, ...] = (
    Transition(ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED, ExecutionEvent.COMPLETE),
    Transition(ExecutionStatus.RUNNING, ExecutionStatus.FAILED, ExecutionEvent.FAIL),
    Transition(ExecutionStatus.RUNNING, ExecutionStatus.PAUSED, ExecutionEvent.PAUSE),
    Transition(ExecutionStatus.PAUSED, ExecutionStatus.RUNNING, ExecutionEvent.RESUME),
    Transition(None, ExecutionStatus.FAILED, ExecutionEvent.CANCEL),
)


def can_transition(current: ExecutionStatus, event: ExecutionEvent) -> bool:
    return any(t.matches(current, event) for t in TRANSITIONS)


def next_status(current: ExecutionStatus, event: ExecutionEvent) -> ExecutionStatus:
    """Target status for `event` from `current`; raises InvalidTransitionError if illegal."""
    for transition in TRANSITIONS:
        if transition.matches(current, event):
            return transition.to_state
    raise InvalidTransitionError(ExecutionStatus(current).value, event.value)
