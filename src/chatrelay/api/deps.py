from __future__ import annotations

"""Service container built once per application from an ``AppConfig``."""

from dataclasses import dataclass
import logging
from typing import Any, Optional

from fastapi import Request

from ..config import AppConfig
from ..infrastructure.chat_store import ChatStore, build_chat_store
from ..infrastructure.user_store import UserStore, build_user_store
from ..security.auth import AuthService
from ..security.rate_limit import RateLimiter
from ..services.generation import ChatModelBackend, GenerationBackend
from ..services.retrieval_gate import DuckDuckGoSearch, RetrievalGate, SearchBackend
from ..services.turn_orchestrator import TurnOrchestrator


logger = logging.getLogger("chatrelay.api")


@dataclass
class Services:
    config: AppConfig
    chats: ChatStore
    users: UserStore
    backend: GenerationBackend
    gate: RetrievalGate
    orchestrator: TurnOrchestrator
    auth: AuthService
    limiter: RateLimiter
    mongo_client: Any = None


def build_services(
    config: AppConfig,
    backend: Optional[GenerationBackend] = None,
    searcher: Optional[SearchBackend] = None,
    chats: Optional[ChatStore] = None,
    users: Optional[UserStore] = None,
) -> Services:
    client = None
    if config.store.impl == "mongo" and (chats is None or users is None):
        from ..infrastructure.chat_store_mongo import make_client

        client = make_client(config.store)
    chats = chats or build_chat_store(config.store, client)
    users = users or build_user_store(config.store, client)
    backend = backend or ChatModelBackend(config.generation)
    gate = RetrievalGate(
        backend,
        searcher or DuckDuckGoSearch(config.search),
        decide_timeout=config.generation.decide_timeout,
        search_timeout=config.search.timeout,
    )
    return Services(
        config=config,
        chats=chats,
        users=users,
        backend=backend,
        gate=gate,
        orchestrator=TurnOrchestrator(chats, backend, gate, stream_timeout=config.generation.stream_timeout),
        auth=AuthService(users, chats, config.jwt),
        limiter=RateLimiter(config.rate_limit),
        mongo_client=client,
    )


async def startup(services: Services) -> None:
    for store in (services.chats, services.users):
        ensure_indexes = getattr(store, "ensure_indexes", None)
        if ensure_indexes is not None:
            await ensure_indexes()
    if not services.config.generation.configured:
        logger.warning("GEMINI_API_KEY not set; message turns will report a configuration error")


async def shutdown(services: Services) -> None:
    if services.mongo_client is not None:
        services.mongo_client.close()


def get_services(request: Request) -> Services:
    return request.app.state.services
