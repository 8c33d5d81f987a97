"""Wire entities and the closed set of real-time events.

Every event carries full entity snapshots rather than diffs, so a client
reconciles by replace/upsert. The ``event`` field is the tag of a pydantic
discriminated union: adding an event means adding a model here, and the
client dispatch table is checked against ``EVENT_TYPES``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union, get_args

from pydantic import BaseModel, Field, TypeAdapter

from swaphub.core.types import NotificationKind, SwapStatus

# === Entity snapshots ===


class ItemSnapshot(BaseModel):
    """Item as seen by clients."""

    id: str
    owner_id: str
    title: str
    available: bool
    created_at: datetime
    updated_at: datetime


class SwapRequestSnapshot(BaseModel):
    """Swap request as seen by clients."""

    id: str
    offered_item_id: str
    desired_item_id: str
    sender_id: str
    receiver_id: str
    status: SwapStatus
    created_at: datetime
    updated_at: datetime


class MessageSnapshot(BaseModel):
    """A single chat message."""

    id: str
    chat_id: str
    seq: int
    sender_id: str
    content: str
    created_at: datetime


class ChatSnapshot(BaseModel):
    """Chat-list entry: the session without its full history."""

    id: str
    request_id: str
    participants: list[str]
    created_at: datetime
    updated_at: datetime
    last_message: MessageSnapshot | None = None


class ChatDetail(ChatSnapshot):
    """Chat session including every message in order."""

    messages: list[MessageSnapshot] = Field(default_factory=list)


# === Events ===


class RequestCreated(BaseModel):
    event: Literal["request-created"] = "request-created"
    request: SwapRequestSnapshot


class RequestUpdated(BaseModel):
    event: Literal["request-updated"] = "request-updated"
    request: SwapRequestSnapshot


class RequestRemoved(BaseModel):
    event: Literal["request-removed"] = "request-removed"
    request_id: str


class SwapAccepted(BaseModel):
    """Accepted swap with the item snapshots it made unavailable."""

    event: Literal["swap-accepted"] = "swap-accepted"
    request: SwapRequestSnapshot
    chat_id: str
    offered_item: ItemSnapshot
    desired_item: ItemSnapshot


class ChatMessage(BaseModel):
    event: Literal["chat-message"] = "chat-message"
    chat_id: str
    message: MessageSnapshot


class ChatUpdate(BaseModel):
    event: Literal["chat-update"] = "chat-update"
    chat: ChatSnapshot


class ChatDeleted(BaseModel):
    event: Literal["chat-deleted"] = "chat-deleted"
    chat_id: str
    deleted_by: str


class SwapNotification(BaseModel):
    """Advisory push. Never the only way to learn about a state change."""

    event: Literal["swap-notification"] = "swap-notification"
    kind: NotificationKind
    request_id: str
    status: SwapStatus | None = None
    message: str


class ErrorEvent(BaseModel):
    """Reply to a failed inbound WebSocket message (sender only)."""

    event: Literal["error"] = "error"
    code: str
    detail: str


Event = Annotated[
    Union[
        RequestCreated,
        RequestUpdated,
        RequestRemoved,
        SwapAccepted,
        ChatMessage,
        ChatUpdate,
        ChatDeleted,
        SwapNotification,
        ErrorEvent,
    ],
    Field(discriminator="event"),
]

EVENT_TYPES: tuple[type[BaseModel], ...] = get_args(get_args(Event)[0])

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def event_name(event_type: type[BaseModel]) -> str:
    """Get the wire tag of an event class."""
    return str(event_type.model_fields["event"].default)


def parse_event(raw: str | bytes) -> Event:
    """Parse a JSON frame into its event model.

    Raises:
        pydantic.ValidationError: If the frame is not a known event.
    """
    return _event_adapter.validate_json(raw)
