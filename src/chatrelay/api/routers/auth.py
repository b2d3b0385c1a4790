from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from ...domain.user_models import LoginRequest, RegisterRequest, TokenResponse, UserPublic
from ...security.auth import get_current_user_id
from ..deps import Services, get_services


router = APIRouter(tags=["auth"])


@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
async def register(req: RegisterRequest, services: Services = Depends(get_services)) -> dict:
    await services.auth.register(req.email, req.password)
    return {"message": "User created successfully"}


@router.post("/auth/login", response_model=TokenResponse)
async def login(req: LoginRequest, request: Request, services: Services = Depends(get_services)) -> TokenResponse:
    services.limiter.hit("login", _rate_limit_identifier(request, req.email))
    return await services.auth.login(req.email, req.password)


def _rate_limit_identifier(request: Request, email: str) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{host}:{email.lower()}"


@router.get("/me", response_model=UserPublic)
async def me(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> UserPublic:
    return await services.auth.profile(user_id)
