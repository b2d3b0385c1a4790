from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatCreate, ChatCreated, ChatDelete, ChatList, MessageCreate, sort_messages
from ...domain.errors import NotFoundOrForbidden, ValidationError
from ...security.auth import get_current_user_id
from ...services.relay import SSE_HEADERS, SSE_MEDIA_TYPE
from ..deps import Services, get_services


router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/create", response_model=ChatCreated, status_code=status.HTTP_201_CREATED)
async def create_chat(
    req: Optional[ChatCreate] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> ChatCreated:
    chat = await services.chats.create_chat(user_id, title=req.title if req else None)
    return ChatCreated(chatId=chat.chat_id)


@router.get("/getall", response_model=ChatList)
async def list_chats(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> ChatList:
    chats = await services.chats.list_owned(user_id, newest_first=True)
    return ChatList(chats=[c.model_copy(update={"messages": sort_messages(c.messages)}) for c in chats])


@router.post("/delete")
async def delete_chat(
    req: ChatDelete,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> dict:
    chat_id = req.chat_id.strip()
    if not chat_id:
        raise ValidationError("ChatId is required")
    if not await services.chats.delete_owned(chat_id, user_id):
        raise NotFoundOrForbidden()
    return {"message": "chat deleted"}


@router.post("/message", response_class=StreamingResponse)
async def post_message(
    req: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    services.limiter.hit("chat_message", user_id)
    # Errors up to here are plain JSON responses; once the response starts
    # everything is reported through the event stream.
    turn = await services.orchestrator.open_turn(user_id, req.chat_id, req.prompt)
    return StreamingResponse(
        services.orchestrator.stream(turn),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
