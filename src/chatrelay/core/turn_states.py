from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional


class TurnState(str, Enum):
    CREATED = "created"
    USER_TURN_PERSISTED = "user_turn_persisted"
    CONTEXT_READY = "context_ready"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED_BEFORE_STREAM = "aborted_before_stream"
    ABORTED_DURING_STREAM = "aborted_during_stream"


# Lifecycle of one message turn. An aborted stream still finalizes, so it
# can reach COMPLETED; an abort before the stream cannot.
TURN_TRANSITIONS: Dict[TurnState, List[TurnState]] = {
    TurnState.CREATED: [TurnState.USER_TURN_PERSISTED, TurnState.ABORTED_BEFORE_STREAM],
    TurnState.USER_TURN_PERSISTED: [TurnState.CONTEXT_READY, TurnState.ABORTED_BEFORE_STREAM],
    TurnState.CONTEXT_READY: [TurnState.STREAMING, TurnState.ABORTED_BEFORE_STREAM],
    TurnState.STREAMING: [TurnState.COMPLETED, TurnState.ABORTED_DURING_STREAM],
    TurnState.ABORTED_DURING_STREAM: [TurnState.COMPLETED],
    TurnState.COMPLETED: [],
    TurnState.ABORTED_BEFORE_STREAM: [],
}

TERMINAL_STATES = frozenset({TurnState.COMPLETED, TurnState.ABORTED_BEFORE_STREAM})


class InvalidTransition(RuntimeError):
    def __init__(self, current: TurnState, target: TurnState) -> None:
        super().__init__(f"Illegal turn transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def next_state(current: TurnState) -> Optional[TurnState]:
    options = TURN_TRANSITIONS.get(current, [])
    return options[0] if options else None


def is_valid_transition(current: TurnState, target: TurnState) -> bool:
    return target in TURN_TRANSITIONS.get(current, [])


def advance(current: TurnState, target: TurnState) -> TurnState:
    if not is_valid_transition(current, target):
        raise InvalidTransition(current, target)
    return target
