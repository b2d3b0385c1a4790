from __future__ import annotations

"""Error taxonomy shared by the store, services and HTTP layer.

Each class carries the HTTP status it is reported with. Not-found and
forbidden are deliberately one class so a caller cannot probe for chat ids
owned by somebody else.
"""

from typing import Optional


class ChatRelayError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(ChatRelayError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(ChatRelayError):
    status_code = 401
    default_message = "Invalid email or password"


class NotFoundOrForbidden(ChatRelayError):
    status_code = 404
    default_message = "Chat not found"


class ConflictError(ChatRelayError):
    status_code = 409
    default_message = "Resource already exists"


class RateLimitExceeded(ChatRelayError):
    status_code = 429
    default_message = "Rate limit exceeded"

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class StoreError(ChatRelayError):
    status_code = 500
    default_message = "Database operation failed"

    def __init__(self, message: Optional[str] = None, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504


class UpstreamError(ChatRelayError):
    status_code = 502
    default_message = "AI backend error"


class UpstreamTimeout(ChatRelayError):
    status_code = 504
    default_message = "AI backend timed out"
