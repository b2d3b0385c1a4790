"""Runtime configuration for the ChatRelay service.

Every setting is read from the environment exactly once, when the API module
builds its collaborators, and then handed to constructors explicitly. Nothing
below ``api/`` calls ``os.getenv`` on its own.

Env vars:
- JWT_SECRET, JWT_EXPIRES_MIN
- GEMINI_API_KEY, CHATRELAY_LLM_BASE_URL, CHATRELAY_LLM_MODEL, CHATRELAY_ROUTER_MODEL
- CHATRELAY_STREAM_TIMEOUT, CHATRELAY_DECIDE_TIMEOUT, CHATRELAY_SEARCH_TIMEOUT
- CHATRELAY_SEARCH_URL
- CHATRELAY_STORE_IMPL (memory|mongo), MONGODB_URI, MONGODB_DB, MONGODB_TIMEOUT_MS
- CHATRELAY_RATE_LIMIT, CHATRELAY_RATE_WINDOW_SEC, CHATRELAY_RATE_LIMIT_DISABLED
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


DEFAULT_LLM_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_SEARCH_URL = "https://duckduckgo.com/html/"


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(env: Mapping[str, str], name: str) -> bool:
    return (env.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 1440

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "JwtConfig":
        env = env if env is not None else os.environ
        secret = env.get("JWT_SECRET") or "dev-secret-change-me"
        return JwtConfig(secret=secret, expires_min=_env_int(env, "JWT_EXPIRES_MIN", 1440))


@dataclass(frozen=True)
class GenerationConfig:
    api_key: Optional[str]
    base_url: str = DEFAULT_LLM_BASE_URL
    model: str = "gemini-2.5-flash"
    router_model: str = "gemini-2.5-flash-lite"
    stream_timeout: float = 40.0
    decide_timeout: float = 8.0
    temperature: float = 0.7

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "GenerationConfig":
        env = env if env is not None else os.environ
        return GenerationConfig(
            api_key=env.get("GEMINI_API_KEY") or None,
            base_url=env.get("CHATRELAY_LLM_BASE_URL") or DEFAULT_LLM_BASE_URL,
            model=env.get("CHATRELAY_LLM_MODEL") or "gemini-2.5-flash",
            router_model=env.get("CHATRELAY_ROUTER_MODEL") or "gemini-2.5-flash-lite",
            stream_timeout=_env_float(env, "CHATRELAY_STREAM_TIMEOUT", 40.0),
            decide_timeout=_env_float(env, "CHATRELAY_DECIDE_TIMEOUT", 8.0),
        )


@dataclass(frozen=True)
class SearchConfig:
    url: str = DEFAULT_SEARCH_URL
    timeout: float = 8.0
    max_results: int = 5
    max_chars: int = 2000
    user_agent: str = "Mozilla/5.0 (compatible)"

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "SearchConfig":
        env = env if env is not None else os.environ
        return SearchConfig(
            url=env.get("CHATRELAY_SEARCH_URL") or DEFAULT_SEARCH_URL,
            timeout=_env_float(env, "CHATRELAY_SEARCH_TIMEOUT", 8.0),
        )


@dataclass(frozen=True)
class StoreConfig:
    impl: str = "memory"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "chatApp"
    timeout_ms: int = 5000

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        env = env if env is not None else os.environ
        return StoreConfig(
            impl=(env.get("CHATRELAY_STORE_IMPL") or "memory").strip().lower(),
            mongo_uri=env.get("MONGODB_URI") or "mongodb://localhost:27017",
            mongo_db=env.get("MONGODB_DB") or "chatApp",
            timeout_ms=_env_int(env, "MONGODB_TIMEOUT_MS", 5000),
        )


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int = 30
    window_seconds: int = 60
    disabled: bool = False

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "RateLimitConfig":
        env = env if env is not None else os.environ
        return RateLimitConfig(
            limit=_env_int(env, "CHATRELAY_RATE_LIMIT", 30),
            window_seconds=_env_int(env, "CHATRELAY_RATE_WINDOW_SEC", 60),
            disabled=_env_flag(env, "CHATRELAY_RATE_LIMIT_DISABLED"),
        )


@dataclass(frozen=True)
class AppConfig:
    jwt: JwtConfig
    generation: GenerationConfig
    search: SearchConfig = field(default_factory=SearchConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = env if env is not None else os.environ
        return AppConfig(
            jwt=JwtConfig.from_env(env),
            generation=GenerationConfig.from_env(env),
            search=SearchConfig.from_env(env),
            store=StoreConfig.from_env(env),
            rate_limit=RateLimitConfig.from_env(env),
        )
