from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, Field


Role = Literal["user", "model"]
TurnRole = Literal["user", "assistant"]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Message(BaseModel):
    role: Role
    content: str
    created_at: datetime = Field(default_factory=utc_now)


class Chat(BaseModel):
    chat_id: str
    user_id: str
    title: str
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ChatCreate(BaseModel):
    title: Optional[str] = None


class ChatDelete(BaseModel):
    chat_id: str = ""


class MessageCreate(BaseModel):
    # Blank values are rejected by the orchestrator so every validation
    # failure shares one error shape.
    chat_id: str = ""
    prompt: str = ""


class ChatCreated(BaseModel):
    message: str = "chat created"
    chatId: str


class ChatList(BaseModel):
    chats: List[Chat]


@dataclass(frozen=True)
class Turn:
    """One role-tagged unit of content handed to the generation backend."""

    role: TurnRole
    content: str

    def as_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


def sort_messages(messages: Sequence[Message]) -> List[Message]:
    """Return messages ordered by creation time, oldest first.

    ``sorted`` is stable, so messages sharing a timestamp keep their append
    order and sorting an already sorted list is a no-op.
    """

    return sorted(messages, key=lambda m: m.created_at)
