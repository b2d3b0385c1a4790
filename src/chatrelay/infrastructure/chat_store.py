from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import uuid

from ..config import StoreConfig
from ..domain.chat_models import Chat, Message, utc_now


class ChatStore(Protocol):
    async def create_chat(self, user_id: str, title: Optional[str] = None) -> Chat: ...

    async def find_owned(self, chat_id: str, user_id: str) -> Optional[Chat]: ...

    async def append_message(self, chat_id: str, user_id: str, message: Message) -> bool: ...

    async def delete_owned(self, chat_id: str, user_id: str) -> bool: ...

    async def list_owned(self, user_id: str, newest_first: bool = True) -> List[Chat]: ...


DEFAULT_CHAT_TITLE = "new chat"


@dataclass
class _Chat:
    chat_id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    messages: List[Message] = field(default_factory=list)


class InMemoryChatStore:
    """Process-local chat store.

    Methods are coroutines to satisfy :class:`ChatStore`, but none of them
    awaits while holding the lock.
    """

    def __init__(self) -> None:
        self._chats: Dict[str, _Chat] = {}
        self._lock = RLock()

    def _chat_model(self, chat: _Chat) -> Chat:
        return Chat(
            chat_id=chat.chat_id,
            user_id=chat.user_id,
            title=chat.title,
            messages=list(chat.messages),
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )

    def _owned(self, chat_id: str, user_id: str) -> Optional[_Chat]:
        chat = self._chats.get(chat_id)
        if chat is None or chat.user_id != user_id:
            return None
        return chat

    async def create_chat(self, user_id: str, title: Optional[str] = None) -> Chat:
        with self._lock:
            now = utc_now()
            chat = _Chat(
                chat_id=uuid.uuid4().hex,
                user_id=user_id,
                title=title or DEFAULT_CHAT_TITLE,
                created_at=now,
                updated_at=now,
            )
            self._chats[chat.chat_id] = chat
            return self._chat_model(chat)

    async def find_owned(self, chat_id: str, user_id: str) -> Optional[Chat]:
        with self._lock:
            chat = self._owned(chat_id, user_id)
            return self._chat_model(chat) if chat else None

    async def append_message(self, chat_id: str, user_id: str, message: Message) -> bool:
        with self._lock:
            chat = self._owned(chat_id, user_id)
            if chat is None:
                return False
            chat.messages.append(message)
            chat.updated_at = utc_now()
            return True

    async def delete_owned(self, chat_id: str, user_id: str) -> bool:
        with self._lock:
            if self._owned(chat_id, user_id) is None:
                return False
            del self._chats[chat_id]
            return True

    async def list_owned(self, user_id: str, newest_first: bool = True) -> List[Chat]:
        with self._lock:
            out = [self._chat_model(c) for c in self._chats.values() if c.user_id == user_id]
        out.sort(key=lambda c: c.created_at)
        # Insertion order breaks timestamp ties
        return out[::-1] if newest_first else out


def build_chat_store(cfg: StoreConfig, client: Any = None) -> ChatStore:
    if cfg.impl == "mongo":
        from .chat_store_mongo import MongoChatStore  # local import keeps motor off the memory path

        return MongoChatStore(cfg, client=client)
    if cfg.impl != "memory":
        raise ValueError(f"Unknown chat store implementation: {cfg.impl}")
    return InMemoryChatStore()
