import asyncio
import types

from bson import ObjectId
import pytest
from pymongo.errors import DuplicateKeyError, OperationFailure, ServerSelectionTimeoutError

from src.chatrelay.config import StoreConfig
from src.chatrelay.domain.chat_models import Message
from src.chatrelay.domain.errors import ConflictError, StoreError
from src.chatrelay.infrastructure.chat_store import DEFAULT_CHAT_TITLE, InMemoryChatStore, build_chat_store
from src.chatrelay.infrastructure.chat_store_mongo import MongoChatStore
from src.chatrelay.infrastructure.user_store import InMemoryUserStore, build_user_store
from src.chatrelay.infrastructure.user_store_mongo import MongoUserStore


class _Cursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, field, direction):
        self._docs.sort(key=lambda d: d.get(field), reverse=direction == -1)
        return self

    async def to_list(self, length=None):
        return list(self._docs)


class _FakeCollection:
    def __init__(self, unique=None):
        self.docs = []
        self.indexes = []
        self.unique = unique
        self.error = None

    def _match(self, query):
        return [d for d in self.docs if all(d.get(k) == v for k, v in query.items())]

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return "ok"

    async def insert_one(self, doc):
        self._maybe_fail()
        if self.unique and any(d.get(self.unique) == doc.get(self.unique) for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key")
        self.docs.append(dict(doc))
        return types.SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query):
        self._maybe_fail()
        found = self._match(query)
        return dict(found[0]) if found else None

    def find(self, query):
        self._maybe_fail()
        return _Cursor(self._match(query))

    async def update_one(self, query, update):
        self._maybe_fail()
        found = self._match(query)
        for doc in found[:1]:
            for key, value in update.get("$push", {}).items():
                doc.setdefault(key, []).append(value)
            doc.update(update.get("$set", {}))
        return types.SimpleNamespace(matched_count=len(found[:1]))

    async def delete_one(self, query):
        self._maybe_fail()
        found = self._match(query)[:1]
        for doc in found:
            self.docs.remove(doc)
        return types.SimpleNamespace(deleted_count=len(found))


class _FakeClient:
    def __init__(self):
        self.cols = {"chat": _FakeCollection(), "users": _FakeCollection(unique="email")}

    def __getitem__(self, name):
        return self.cols


def _mongo_stores():
    client = _FakeClient()
    cfg = StoreConfig(impl="mongo")
    return client, MongoChatStore(cfg, client=client), MongoUserStore(cfg, client=client)


def test_in_memory_chat_store_lifecycle():
    async def scenario():
        store = InMemoryChatStore()
        first = await store.create_chat("u1", title="Chat")
        second = await store.create_chat("u1")
        await store.create_chat("u2")
        assert second.title == DEFAULT_CHAT_TITLE

        assert await store.append_message(first.chat_id, "u1", Message(role="user", content="hi"))
        assert not await store.append_message(first.chat_id, "u2", Message(role="user", content="nope"))
        assert await store.find_owned(first.chat_id, "u2") is None

        listed = await store.list_owned("u1")
        assert [c.chat_id for c in listed] == [second.chat_id, first.chat_id]
        assert [m.content for m in listed[1].messages] == ["hi"]

        assert await store.delete_owned(first.chat_id, "u1")
        assert not await store.delete_owned(first.chat_id, "u1")

    asyncio.run(scenario())


def test_store_factories():
    assert isinstance(build_chat_store(StoreConfig()), InMemoryChatStore)
    assert isinstance(build_user_store(StoreConfig()), InMemoryUserStore)
    with pytest.raises(ValueError):
        build_chat_store(StoreConfig(impl="sqlite"))
    assert isinstance(build_chat_store(StoreConfig(impl="mongo"), client=_FakeClient()), MongoChatStore)


def test_mongo_chat_store_scopes_by_owner():
    client, chats, _ = _mongo_stores()

    async def scenario():
        await chats.ensure_indexes()
        chat = await chats.create_chat("u1")
        assert ObjectId.is_valid(chat.chat_id)
        assert await chats.append_message(chat.chat_id, "u1", Message(role="user", content="hi"))
        assert await chats.append_message(chat.chat_id, "u1", Message(role="model", content="hello"))
        assert not await chats.append_message(chat.chat_id, "u2", Message(role="user", content="x"))

        found = await chats.find_owned(chat.chat_id, "u1")
        assert [(m.role, m.content) for m in found.messages] == [("user", "hi"), ("model", "hello")]
        assert await chats.find_owned(chat.chat_id, "u2") is None
        assert await chats.find_owned("not-an-object-id", "u1") is None
        assert not await chats.delete_owned("not-an-object-id", "u1")

        assert len(await chats.list_owned("u1")) == 1
        assert await chats.delete_owned(chat.chat_id, "u1")
        assert await chats.list_owned("u1") == []

    asyncio.run(scenario())
    stored_keys = client.cols["chat"].indexes[0][0]
    assert stored_keys[0] == ("user_id", 1)


def test_mongo_errors_map_to_store_error():
    client, chats, _ = _mongo_stores()
    col = client.cols["chat"]

    col.error = ServerSelectionTimeoutError("no servers")
    with pytest.raises(StoreError) as timed_out:
        asyncio.run(chats.create_chat("u1"))
    assert timed_out.value.timed_out and timed_out.value.status_code == 504

    col.error = OperationFailure("boom")
    with pytest.raises(StoreError) as failed:
        asyncio.run(chats.list_owned("u1"))
    assert failed.value.status_code == 500


def test_user_stores_reject_duplicate_email():
    _, _, mongo_users = _mongo_stores()
    for users in (InMemoryUserStore(), mongo_users):
        async def scenario(users=users):
            created = await users.create_user("Ada@Example.com", "hash")
            assert created.email == "ada@example.com"
            with pytest.raises(ConflictError):
                await users.create_user("ada@example.com", "other")
            assert (await users.find_by_email("ADA@example.com")).user_id == created.user_id
            assert (await users.find_by_id(created.user_id)).password_hash == "hash"
            assert await users.find_by_id("missing") is None

        asyncio.run(scenario())
