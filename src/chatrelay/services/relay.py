from __future__ import annotations

import json
from typing import Dict


SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream"


class RelayClosedError(RuntimeError):
    pass


class RelayChannel:
    """One-shot server-sent-events emitter for a single message turn.

    Every method returns one complete SSE frame that the caller yields
    straight to the response, so nothing is batched. After :meth:`done` or
    :meth:`close` the channel refuses further events.
    """

    def __init__(self) -> None:
        self._closed = False
        self.frames_sent = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _frame(self, payload: str, event: str | None = None) -> str:
        if self._closed:
            raise RelayClosedError("relay channel already closed")
        self.frames_sent += 1
        if event:
            return f"event: {event}\ndata: {payload}\n\n"
        return f"data: {payload}\n\n"

    def delta(self, text: str) -> str:
        return self._frame(json.dumps({"delta": text}))

    def error(self, message: str) -> str:
        return self._frame(json.dumps({"error": message}))

    def done(self) -> str:
        frame = self._frame(json.dumps("end"), event="done")
        self._closed = True
        return frame

    def close(self) -> None:
        self._closed = True
