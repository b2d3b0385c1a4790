from __future__ import annotations

"""Simple in-memory rate limiting primitives."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Tuple

from ..config import RateLimitConfig
from ..domain.errors import RateLimitExceeded


@dataclass
class _RateLimitEntry:
    count: int
    window_end: datetime


class RateLimiter:
    """Fixed-window counter keyed by (action, identifier)."""

    def __init__(self, cfg: RateLimitConfig) -> None:
        self._cfg = cfg
        self._store: Dict[Tuple[str, str], _RateLimitEntry] = {}
        self._lock = Lock()

    def hit(self, key: str, identifier: str) -> None:
        """Track a rate-limited action.

        Raises:
            RateLimitExceeded if the action should be blocked. retry_after_seconds
            indicates when the caller may retry.
        """

        if self._cfg.disabled:
            return

        now = datetime.now(timezone.utc)
        store_key = (key, identifier)
        with self._lock:
            entry = self._store.get(store_key)
            if entry and entry.window_end > now:
                if entry.count >= self._cfg.limit:
                    retry_after = int((entry.window_end - now).total_seconds())
                    raise RateLimitExceeded(max(retry_after, 1), "Too many requests. Please try again later.")
                entry.count += 1
                return
            window_end = now + timedelta(seconds=self._cfg.window_seconds)
            self._store[store_key] = _RateLimitEntry(count=1, window_end=window_end)

    def reset(self) -> None:
        """Clear in-memory counters (useful for tests)."""

        with self._lock:
            self._store.clear()
