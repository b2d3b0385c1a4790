from __future__ import annotations

"""Prometheus metrics for the ChatRelay FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for message turns and relayed chunks.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "chatrelay_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

TURN_OUTCOMES = Counter(
    "chatrelay_turns_total",
    "Message turns by final outcome",
    labelnames=("outcome",),
)

STREAM_CHUNKS = Counter(
    "chatrelay_stream_chunks_total",
    "Generated chunks relayed to clients",
)


def sanitize_path(path: str) -> str:
    """Reduce paths to their first two static segments (e.g. /chat/message)."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api":
        segs = segs[1:]
    return "/" + "/".join(segs[:2])


def record_turn(outcome: str) -> None:
    TURN_OUTCOMES.labels(outcome=outcome).inc()


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # For streamed responses this measures time to headers, not to the last event
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
