from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

from ..domain.chat_models import Message, Turn


HISTORY_WINDOW = 6
DEFAULT_INSTRUCTION = "You are a helpful AI assistant."


def _content_of(message: Any) -> str:
    if isinstance(message, Message):
        return message.content
    if isinstance(message, dict):
        value = message.get("content")
        return value if isinstance(value, str) else ""
    return ""


def _role_of(message: Any) -> str:
    if isinstance(message, Message):
        return message.role
    if isinstance(message, dict):
        return str(message.get("role") or "user")
    return "user"


def build_context(
    messages: Optional[Iterable[Any]],
    prompt: str,
    steering_text: Optional[str] = None,
) -> Tuple[List[Turn], str]:
    """Turn a transcript plus the newest prompt into generation input.

    Only the last ``HISTORY_WINDOW`` non-empty messages are kept, so the
    result holds at most ``HISTORY_WINDOW + 1`` turns with the prompt last.
    A non-empty ``steering_text`` replaces the default instruction outright.
    """

    try:
        candidates = list(messages or [])
    except TypeError:
        candidates = []

    filtered = [m for m in candidates if _content_of(m)]
    recent = filtered[-HISTORY_WINDOW:]

    turns: List[Turn] = []
    for m in recent:
        role = "assistant" if _role_of(m) == "model" else "user"
        turns.append(Turn(role=role, content=_content_of(m)))
    turns.append(Turn(role="user", content=prompt or ""))

    instruction = steering_text if steering_text and steering_text.strip() else DEFAULT_INSTRUCTION
    return turns, instruction
