"""Chat routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from swaphub.core.errors import SwapHubError
from swaphub.core.events import ChatDetail, ChatSnapshot, MessageSnapshot
from swaphub.server.api.deps import get_chats, get_current_user, to_http_exception
from swaphub.server.chats import ChatStore
from swaphub.server.schemas import MessageCreateRequest

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.get("", response_model=list[ChatSnapshot])
async def list_chats(
    chats: ChatStore = Depends(get_chats),
    user_id: str = Depends(get_current_user),
) -> list[ChatSnapshot]:
    """List the caller's chats, most recently active first."""
    return await chats.list_for_user(user_id)


@router.get("/{chat_id}", response_model=ChatDetail)
async def get_chat(
    chat_id: str,
    chats: ChatStore = Depends(get_chats),
    user_id: str = Depends(get_current_user),
) -> ChatDetail:
    """Get a chat with its message history."""
    try:
        return await chats.get_session(chat_id, user_id)
    except SwapHubError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{chat_id}/messages",
    response_model=MessageSnapshot,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    chat_id: str,
    body: MessageCreateRequest,
    chats: ChatStore = Depends(get_chats),
    user_id: str = Depends(get_current_user),
) -> MessageSnapshot:
    """Append a message; it is also pushed to the chat room."""
    try:
        result = await chats.post_message(chat_id, user_id, body.content)
    except SwapHubError as e:
        raise to_http_exception(e) from e
    return result.message
