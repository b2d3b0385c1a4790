"""Lifecycle of one message turn.

A turn is split in two phases so the HTTP layer can answer request errors
with a plain JSON status before any stream is opened:

``open_turn``
    validate -> check ownership -> persist the user message -> optional web
    augmentation -> build context. Any failure here ends the turn in
    ``aborted_before_stream`` and raises a :class:`ChatRelayError`.

``stream``
    open the generation stream, relay every chunk as it arrives, then
    persist the accumulated text as the model message and emit ``done``.
    Upstream errors, the deadline, and client disconnects all stop the
    relay but never skip the final write, so the stored reply always equals
    the concatenated ``delta`` events the client was sent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import AsyncIterator, List, Optional

from ..core.turn_states import TurnState, advance
from ..domain.chat_models import Message, Turn
from ..domain.errors import (
    ChatRelayError,
    NotFoundOrForbidden,
    StoreError,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from ..infrastructure.chat_store import ChatStore
from ..observability.metrics import STREAM_CHUNKS, record_turn
from .context_builder import build_context
from .generation import GenerationBackend, StreamChunk
from .relay import RelayChannel
from .retrieval_gate import RetrievalGate


logger = logging.getLogger("chatrelay.orchestrator")
TURN_LOG = logging.getLogger("chatrelay.turn")

DISCONNECT_MESSAGE = "client disconnected"


@dataclass
class PreparedTurn:
    chat_id: str
    user_id: str
    prompt: str
    turns: List[Turn] = field(default_factory=list)
    instruction: str = ""
    augmented: bool = False
    state: TurnState = TurnState.CREATED
    history: List[TurnState] = field(default_factory=lambda: [TurnState.CREATED])
    error: Optional[str] = None
    chunks: int = 0
    response_text: Optional[str] = None
    assistant_persisted: bool = False
    timed_out: bool = False

    def move(self, target: TurnState) -> None:
        self.state = advance(self.state, target)
        self.history.append(target)


class TurnOrchestrator:
    def __init__(
        self,
        store: ChatStore,
        backend: GenerationBackend,
        gate: Optional[RetrievalGate] = None,
        stream_timeout: float = 40.0,
    ) -> None:
        self._store = store
        self._backend = backend
        self._gate = gate
        self._stream_timeout = stream_timeout

    async def open_turn(self, user_id: str, chat_id: str, prompt: str) -> PreparedTurn:
        turn = PreparedTurn(chat_id=(chat_id or "").strip(), user_id=user_id, prompt=prompt or "")
        try:
            if not turn.chat_id or not turn.prompt.strip():
                raise ValidationError("ChatId and Prompt are required")
            chat = await self._store.find_owned(turn.chat_id, user_id)
            if chat is None:
                raise NotFoundOrForbidden()
            # The user's words must be durable before any generation call.
            if not await self._store.append_message(turn.chat_id, user_id, Message(role="user", content=turn.prompt)):
                raise NotFoundOrForbidden()
        except ChatRelayError as exc:
            turn.error = exc.message
            turn.move(TurnState.ABORTED_BEFORE_STREAM)
            record_turn(_outcome_for(exc))
            TURN_LOG.info("turn_rejected", extra={"chat_id": turn.chat_id, "reason": exc.__class__.__name__})
            raise
        turn.move(TurnState.USER_TURN_PERSISTED)
        TURN_LOG.info("turn_user_persisted", extra={"chat_id": turn.chat_id})

        steering = await self._gate.augment(turn.prompt) if self._gate is not None else None
        turn.augmented = steering is not None
        turn.turns, turn.instruction = build_context(chat.messages, turn.prompt, steering)
        turn.move(TurnState.CONTEXT_READY)
        TURN_LOG.debug(
            "turn_context_ready",
            extra={"chat_id": turn.chat_id, "turns": len(turn.turns), "augmented": turn.augmented},
        )
        return turn

    async def stream(self, turn: PreparedTurn, channel: Optional[RelayChannel] = None) -> AsyncIterator[str]:
        """Relay generated chunks as SSE frames, then persist and emit ``done``."""

        channel = channel or RelayChannel()
        turn.move(TurnState.STREAMING)
        parts: List[str] = []
        upstream = self._backend.stream(turn.turns, turn.instruction)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._stream_timeout
        finished = False
        try:
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    chunk: StreamChunk = await asyncio.wait_for(anext(upstream), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    turn.timed_out = True
                    self._abort(turn, UpstreamTimeout.default_message)
                    yield channel.error(turn.error or UpstreamTimeout.default_message)
                    break
                except Exception as exc:
                    logger.warning("upstream_stream_raised", extra={"chat_id": turn.chat_id, "err": str(exc)})
                    self._abort(turn, UpstreamError.default_message)
                    yield channel.error(UpstreamError.default_message)
                    break
                if chunk.is_error:
                    self._abort(turn, chunk.error or "")
                    yield channel.error(turn.error or "")
                    break
                if not chunk.text:
                    continue
                parts.append(chunk.text)
                turn.chunks += 1
                STREAM_CHUNKS.inc()
                yield channel.delta(chunk.text)
            finished = True
        finally:
            await self._close_upstream(upstream)
            if not finished:
                # Cancelled (client went away) or the consumer closed us early.
                if turn.state is TurnState.STREAMING:
                    self._abort(turn, DISCONNECT_MESSAGE)
                channel.close()
                await asyncio.shield(self._finalize(turn, "".join(parts)))

        await self._finalize(turn, "".join(parts))
        yield channel.done()

    def _abort(self, turn: PreparedTurn, reason: str) -> None:
        turn.error = reason
        turn.move(TurnState.ABORTED_DURING_STREAM)
        TURN_LOG.warning(
            "turn_stream_error",
            extra={"chat_id": turn.chat_id, "err": reason, "chunks": turn.chunks},
        )

    async def _close_upstream(self, upstream: AsyncIterator[StreamChunk]) -> None:
        aclose = getattr(upstream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as exc:
            logger.debug("upstream_close_failed", extra={"err": str(exc)})

    async def _finalize(self, turn: PreparedTurn, text: str) -> None:
        turn.response_text = text
        try:
            turn.assistant_persisted = await self._store.append_message(
                turn.chat_id, turn.user_id, Message(role="model", content=text)
            )
            if not turn.assistant_persisted:
                TURN_LOG.warning("turn_assistant_chat_missing", extra={"chat_id": turn.chat_id})
        except StoreError as exc:
            # The client already has the text; the transcript may lag behind it.
            TURN_LOG.error("turn_assistant_persist_failed", extra={"chat_id": turn.chat_id, "err": exc.message})
        if turn.timed_out:
            outcome = "timeout"
        elif turn.state is TurnState.ABORTED_DURING_STREAM:
            outcome = "aborted_during_stream"
        else:
            outcome = "completed"
        turn.move(TurnState.COMPLETED)
        record_turn(outcome)
        TURN_LOG.info(
            "turn_completed",
            extra={"chat_id": turn.chat_id, "outcome": outcome, "chunks": turn.chunks, "chars": len(text)},
        )


def _outcome_for(exc: ChatRelayError) -> str:
    if isinstance(exc, ValidationError):
        return "invalid"
    if isinstance(exc, NotFoundOrForbidden):
        return "not_found"
    if isinstance(exc, StoreError):
        return "store_error"
    return "rejected"
