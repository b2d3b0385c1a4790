from __future__ import annotations

"""Authentication: password hashing, JWT handling and account flows.

This module provides:
- bcrypt password hashing helpers
- JWT encode/decode helpers carrying a ``userId`` claim
- ``AuthService`` for registration and login against a ``UserStore``
- a FastAPI dependency resolving the bearer token to a user id
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import JwtConfig
from ..domain.errors import AuthenticationError, NotFoundOrForbidden
from ..domain.user_models import TokenResponse, UserPublic, UserRecord
from ..infrastructure.chat_store import ChatStore
from ..infrastructure.user_store import UserStore


logger = logging.getLogger("chatrelay.auth")
bearer_scheme = HTTPBearer(auto_error=False)

FIRST_CHAT_TITLE = "Chat"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hash_: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hash_.encode())
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: str, cfg: JwtConfig) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "userId": user_id,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: JwtConfig) -> str:
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")
    user_id = data.get("userId")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Invalid token claims")
    return user_id


class AuthService:
    def __init__(self, users: UserStore, chats: ChatStore, jwt_cfg: JwtConfig) -> None:
        self._users = users
        self._chats = chats
        self._jwt = jwt_cfg

    @property
    def jwt_config(self) -> JwtConfig:
        return self._jwt

    async def register(self, email: str, password: str) -> UserRecord:
        """Create the account and its first chat.

        Raises ConflictError when the email is taken.
        """
        user = await self._users.create_user(email, hash_password(password))
        logger.info("Registered user id=%s", user.user_id)
        await self._chats.create_chat(user.user_id, title=FIRST_CHAT_TITLE)
        return user

    async def login(self, email: str, password: str) -> TokenResponse:
        user = await self._users.find_by_email(email)
        # Same error for unknown email and wrong password
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        token = create_access_token(user.user_id, self._jwt)
        return TokenResponse(token=token, user=UserPublic(id=user.user_id, email=user.email))

    async def profile(self, user_id: str) -> UserPublic:
        user = await self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundOrForbidden("User not found")
        return UserPublic(id=user.user_id, email=user.email)


def get_current_user_id(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Resolve the bearer token to the authenticated user id."""
    if creds is None:
        raise AuthenticationError("Authorization header missing")
    if not creds.scheme or creds.scheme.lower() != "bearer" or not creds.credentials.strip():
        raise AuthenticationError("Token missing")
    auth: AuthService = request.app.state.services.auth
    return decode_token(creds.credentials.strip(), auth.jwt_config)
