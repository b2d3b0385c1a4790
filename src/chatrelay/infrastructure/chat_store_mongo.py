from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ExecutionTimeout, NetworkTimeout, PyMongoError, ServerSelectionTimeoutError

from ..config import StoreConfig
from ..domain.chat_models import Chat, Message, utc_now
from ..domain.errors import StoreError
from .chat_store import DEFAULT_CHAT_TITLE


logger = logging.getLogger("chatrelay.store")

_TIMEOUT_ERRORS = (ExecutionTimeout, NetworkTimeout, ServerSelectionTimeoutError)


def make_client(cfg: StoreConfig) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(
        cfg.mongo_uri,
        serverSelectionTimeoutMS=cfg.timeout_ms,
        socketTimeoutMS=cfg.timeout_ms,
        tz_aware=True,
    )


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Translate driver failures into :class:`StoreError`."""

    try:
        yield
    except _TIMEOUT_ERRORS as exc:
        logger.warning("mongo_timeout", extra={"operation": operation, "err": str(exc)})
        raise StoreError("database operation timed out", timed_out=True) from exc
    except PyMongoError as exc:
        logger.error("mongo_error", extra={"operation": operation, "err": str(exc)})
        raise StoreError(f"failed to {operation}") from exc


def _object_id(chat_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(chat_id)
    except (InvalidId, TypeError):
        return None


def _as_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return utc_now()


class MongoChatStore:
    """Chats as single documents with an embedded ``messages`` array.

    Appends use ``$push`` filtered by ``_id`` and ``user_id`` so concurrent
    turns never overwrite each other and can never touch another user's chat.
    """

    def __init__(self, cfg: StoreConfig, client: Optional[AsyncIOMotorClient] = None) -> None:
        self._client = client or make_client(cfg)
        self._chats: AsyncIOMotorCollection = self._client[cfg.mongo_db]["chat"]

    async def ensure_indexes(self) -> None:
        async with store_errors("create chat indexes"):
            await self._chats.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    async def create_chat(self, user_id: str, title: Optional[str] = None) -> Chat:
        now = utc_now()
        doc = {
            "_id": ObjectId(),
            "user_id": user_id,
            "title": title or DEFAULT_CHAT_TITLE,
            "messages": [],
            "created_at": now,
            "updated_at": now,
        }
        async with store_errors("insert chat"):
            await self._chats.insert_one(doc)
        return self._to_chat(doc)

    async def find_owned(self, chat_id: str, user_id: str) -> Optional[Chat]:
        oid = _object_id(chat_id)
        if oid is None:
            return None
        async with store_errors("find chat"):
            doc = await self._chats.find_one({"_id": oid, "user_id": user_id})
        return self._to_chat(doc) if doc else None

    async def append_message(self, chat_id: str, user_id: str, message: Message) -> bool:
        oid = _object_id(chat_id)
        if oid is None:
            return False
        async with store_errors("save message"):
            result = await self._chats.update_one(
                {"_id": oid, "user_id": user_id},
                {
                    "$push": {"messages": self._from_message(message)},
                    "$set": {"updated_at": utc_now()},
                },
            )
        return result.matched_count > 0

    async def delete_owned(self, chat_id: str, user_id: str) -> bool:
        oid = _object_id(chat_id)
        if oid is None:
            return False
        async with store_errors("delete chat"):
            result = await self._chats.delete_one({"_id": oid, "user_id": user_id})
        return result.deleted_count > 0

    async def list_owned(self, user_id: str, newest_first: bool = True) -> List[Chat]:
        direction = DESCENDING if newest_first else ASCENDING
        async with store_errors("find chats"):
            cursor = self._chats.find({"user_id": user_id}).sort("created_at", direction)
            docs = await cursor.to_list(length=None)
        return [self._to_chat(doc) for doc in docs]

    def _from_message(self, message: Message) -> Dict[str, Any]:
        return {"role": message.role, "content": message.content, "created_at": message.created_at}

    def _to_chat(self, doc: Dict[str, Any]) -> Chat:
        data = dict(doc)
        messages = [
            Message(
                role="model" if m.get("role") == "model" else "user",
                content=str(m.get("content", "")),
                created_at=_as_utc(m.get("created_at")),
            )
            for m in data.get("messages") or []
            if isinstance(m, dict)
        ]
        return Chat(
            chat_id=str(data.get("_id")),
            user_id=str(data.get("user_id", "")),
            title=str(data.get("title", DEFAULT_CHAT_TITLE)),
            messages=messages,
            created_at=_as_utc(data.get("created_at")),
            updated_at=_as_utc(data.get("updated_at")),
        )
