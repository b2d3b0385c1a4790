from __future__ import annotations

from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError

from ..config import StoreConfig
from ..domain.chat_models import utc_now
from ..domain.errors import ConflictError
from ..domain.user_models import UserRecord
from .chat_store_mongo import _as_utc, make_client, store_errors


class MongoUserStore:
    def __init__(self, cfg: StoreConfig, client: Optional[AsyncIOMotorClient] = None) -> None:
        self._client = client or make_client(cfg)
        self._users: AsyncIOMotorCollection = self._client[cfg.mongo_db]["users"]

    async def ensure_indexes(self) -> None:
        async with store_errors("create user indexes"):
            await self._users.create_index("email", unique=True)

    async def create_user(self, email: str, password_hash: str) -> UserRecord:
        now = utc_now()
        doc = {
            "_id": ObjectId(),
            "email": email.lower(),
            "password": password_hash,
            "created_at": now,
            "updated_at": now,
        }
        async with store_errors("insert user"):
            try:
                await self._users.insert_one(doc)
            except DuplicateKeyError as exc:
                raise ConflictError("This email address is already registered.") from exc
        return self._to_user(doc)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        async with store_errors("find user"):
            doc = await self._users.find_one({"email": email.lower()})
        return self._to_user(doc) if doc else None

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        async with store_errors("find user"):
            doc = await self._users.find_one({"_id": oid})
        return self._to_user(doc) if doc else None

    def _to_user(self, doc: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            user_id=str(doc.get("_id")),
            email=str(doc.get("email", "")),
            password_hash=str(doc.get("password", "")),
            created_at=_as_utc(doc.get("created_at")),
            updated_at=_as_utc(doc.get("updated_at")),
        )
