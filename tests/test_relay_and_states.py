import json

import pytest

from src.chatrelay.core.turn_states import (
    TERMINAL_STATES,
    InvalidTransition,
    TurnState,
    advance,
    is_valid_transition,
    next_state,
)
from src.chatrelay.services.relay import SSE_HEADERS, RelayChannel, RelayClosedError


def test_relay_frames_are_sse_shaped():
    ch = RelayChannel()
    assert ch.delta("Hel") == 'data: {"delta": "Hel"}\n\n'
    err = ch.error("boom")
    assert json.loads(err[len("data: "):].strip()) == {"error": "boom"}
    assert ch.done() == 'event: done\ndata: "end"\n\n'
    assert ch.frames_sent == 3
    assert ch.closed


def test_relay_refuses_events_after_done():
    ch = RelayChannel()
    ch.done()
    with pytest.raises(RelayClosedError):
        ch.delta("late")
    with pytest.raises(RelayClosedError):
        ch.done()


def test_relay_close_without_done():
    ch = RelayChannel()
    ch.close()
    with pytest.raises(RelayClosedError):
        ch.error("x")
    assert ch.frames_sent == 0


def test_sse_headers_disable_buffering():
    assert SSE_HEADERS["Cache-Control"] == "no-cache"
    assert SSE_HEADERS["X-Accel-Buffering"] == "no"


def test_happy_path_transitions():
    state = TurnState.CREATED
    for target in (
        TurnState.USER_TURN_PERSISTED,
        TurnState.CONTEXT_READY,
        TurnState.STREAMING,
        TurnState.COMPLETED,
    ):
        assert next_state(state) == target
        state = advance(state, target)
    assert state in TERMINAL_STATES
    assert next_state(state) is None


def test_aborted_stream_still_completes():
    assert is_valid_transition(TurnState.STREAMING, TurnState.ABORTED_DURING_STREAM)
    assert advance(TurnState.ABORTED_DURING_STREAM, TurnState.COMPLETED) is TurnState.COMPLETED


def test_abort_before_stream_is_terminal():
    with pytest.raises(InvalidTransition):
        advance(TurnState.ABORTED_BEFORE_STREAM, TurnState.STREAMING)
    assert not is_valid_transition(TurnState.CREATED, TurnState.STREAMING)
    assert not is_valid_transition(TurnState.STREAMING, TurnState.ABORTED_BEFORE_STREAM)
