"""
Tests for execution status transitions.
"""

import pytest

from forgeagent.core.errors import InvalidTransitionError
from forgeagent.core.state_machine import (
    TRANSITIONS,
    ExecutionEvent,
    Transition,
    can_transition,
    next_status,
)
from forgeagent.storage.models import ExecutionStatus

RUNNING = ExecutionStatus.RUNNING
PAUSED = ExecutionStatus.PAUSED
COMPLETED = ExecutionStatus.COMPLETED
FAILED = ExecutionStatus.FAILED


class TestTransitions:
    @pytest.mark.parametrize(
        "current, event, expected",
        [
            (RUNNING, ExecutionEvent.COMPLETE, COMPLETED),
            (RUNNING, ExecutionEvent.FAIL, FAILED),
            (RUNNING, ExecutionEvent.PAUSE, PAUSED),
            (PAUSED, ExecutionEvent.RESUME, RUNNING),
        ],
    )
    def test_legal_moves(self, current, event, expected):
        assert can_transition(current, event)
        assert next_status(current, event) == expected

    @pytest.mark.parametrize(
        "current, event",
        [
            (PAUSED, ExecutionEvent.PAUSE),
            (COMPLETED, ExecutionEvent.PAUSE),
            (RUNNING, ExecutionEvent.RESUME),
            (COMPLETED, ExecutionEvent.RESUME),
            (FAILED, ExecutionEvent.RESUME),
            (PAUSED, ExecutionEvent.COMPLETE),
        ],
    )
    def test_illegal_moves(self, current, event):
        assert not can_transition(current, event)
        with pytest.raises(InvalidTransitionError):
            next_status(current, event)

    @pytest.mark.parametrize("current", list(ExecutionStatus))
    def test_cancel_from_anywhere(self, current):
        assert next_status(current, ExecutionEvent.CANCEL) == FAILED

    def test_terminal_states_only_accept_cancel(self):
        for terminal in (COMPLETED, FAILED):
            allowed = [e for e in ExecutionEvent if can_transition(terminal, e)]
            assert allowed == [ExecutionEvent.CANCEL]

    def test_wildcard_transition_matches(self):
        transition = Transition(None, FAILED, ExecutionEvent.CANCEL)
        assert transition.matches(PAUSED, ExecutionEvent.CANCEL)
        assert not transition.matches(PAUSED, ExecutionEvent.FAIL)
        assert transition in TRANSITIONS

    def test_error_message(self):
        with pytest.raises(InvalidTransitionError, match="completed -> resume"):
            next_status(COMPLETED, ExecutionEvent.RESUME)
