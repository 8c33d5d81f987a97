"""Pydantic schemas for API request/response models.

Entity responses reuse the snapshot models from ``swaphub.core.events`` so
the REST surface and the event stream carry identical shapes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from swaphub.core.events import (
    ChatDetail,
    ChatSnapshot,
    ItemSnapshot,
    MessageSnapshot,
    SwapRequestSnapshot,
)
from swaphub.core.types import SwapStatus
from swaphub.server.models import ChatMessage, ChatSession, Item, SwapRequest, User

# === User schemas ===


class CredentialsRequest(BaseModel):
    """Request body for registration and login."""

    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=8, max_length=256)


class UserResponse(BaseModel):
    """User data in responses."""

    id: str
    username: str
    created_at: str


class TokenResponse(BaseModel):
    """Response for registration and login."""

    token: str
    user: UserResponse


# === Item schemas ===


class ItemCreateRequest(BaseModel):
    """Request body for posting an item."""

    title: str = Field(min_length=1, max_length=255)


# === Swap schemas ===


class SwapCreateRequest(BaseModel):
    """Request body for proposing a swap."""

    offered_item_id: str
    desired_item_id: str


class AcceptResponse(BaseModel):
    """Response for accepting a swap: the request and its new chat."""

    request: SwapRequestSnapshot
    chat_id: str
    chat: ChatSnapshot


# === Chat schemas ===


class MessageCreateRequest(BaseModel):
    """Request body for posting a chat message."""

    content: str


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    connections: int


# === Converters ===


def user_to_response(user: User) -> UserResponse:
    """Convert User to response model."""
    return UserResponse(
        id=user.id,
        username=user.username,
        created_at=user.created_at.isoformat(),
    )


def item_to_snapshot(item: Item) -> ItemSnapshot:
    """Convert Item to its wire snapshot."""
    return ItemSnapshot(
        id=item.id,
        owner_id=item.owner_id,
        title=item.title,
        available=item.available,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def request_to_snapshot(request: SwapRequest) -> SwapRequestSnapshot:
    """Convert SwapRequest to its wire snapshot."""
    return SwapRequestSnapshot(
        id=request.id,
        offered_item_id=request.offered_item_id,
        desired_item_id=request.desired_item_id,
        sender_id=request.sender_id,
        receiver_id=request.receiver_id,
        status=SwapStatus(request.status),
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


def message_to_snapshot(message: ChatMessage) -> MessageSnapshot:
    """Convert ChatMessage to its wire snapshot."""
    return MessageSnapshot(
        id=message.id,
        chat_id=message.chat_id,
        seq=message.seq,
        sender_id=message.sender_id,
        content=message.content,
        created_at=message.created_at,
    )


def chat_to_snapshot(chat: ChatSession, last_message: ChatMessage | None) -> ChatSnapshot:
    """Convert ChatSession to a chat-list entry."""
    return ChatSnapshot(
        id=chat.id,
        request_id=chat.request_id,
        participants=sorted(chat.participants),
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        last_message=message_to_snapshot(last_message) if last_message else None,
    )


def chat_to_detail(chat: ChatSession, messages: list[ChatMessage]) -> ChatDetail:
    """Convert ChatSession and its messages to the detail view."""
    snapshots = [message_to_snapshot(m) for m in messages]
    return ChatDetail(
        id=chat.id,
        request_id=chat.request_id,
        participants=sorted(chat.participants),
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        last_message=snapshots[-1] if snapshots else None,
        messages=snapshots,
    )
