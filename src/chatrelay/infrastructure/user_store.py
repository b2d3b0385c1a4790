from __future__ import annotations

from threading import RLock
from typing import Any, Dict, Optional, Protocol
import uuid

from ..config import StoreConfig
from ..domain.chat_models import utc_now
from ..domain.errors import ConflictError
from ..domain.user_models import UserRecord


class UserStore(Protocol):
    async def create_user(self, email: str, password_hash: str) -> UserRecord: ...

    async def find_by_email(self, email: str) -> Optional[UserRecord]: ...

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]: ...


class InMemoryUserStore:
    def __init__(self) -> None:
        self._users: Dict[str, UserRecord] = {}
        self._by_email: Dict[str, str] = {}
        self._lock = RLock()

    async def create_user(self, email: str, password_hash: str) -> UserRecord:
        email_l = email.lower()
        with self._lock:
            if email_l in self._by_email:
                raise ConflictError("This email address is already registered.")
            now = utc_now()
            user = UserRecord(
                user_id=uuid.uuid4().hex,
                email=email_l,
                password_hash=password_hash,
                created_at=now,
                updated_at=now,
            )
            self._users[user.user_id] = user
            self._by_email[email_l] = user.user_id
            return user

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            user_id = self._by_email.get(email.lower())
            return self._users.get(user_id) if user_id else None

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(user_id)


def build_user_store(cfg: StoreConfig, client: Any = None) -> UserStore:
    if cfg.impl == "mongo":
        from .user_store_mongo import MongoUserStore

        return MongoUserStore(cfg, client=client)
    if cfg.impl != "memory":
        raise ValueError(f"Unknown user store implementation: {cfg.impl}")
    return InMemoryUserStore()
