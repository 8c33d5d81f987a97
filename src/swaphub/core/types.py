"""Shared types for swaphub.

This module defines enums used by both client and server.
"""

from __future__ import annotations

from enum import Enum


class SwapStatus(str, Enum):
    """Lifecycle status of a swap request.

    A removed request is deleted from the ledger rather than
    reaching a fourth status.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NotificationKind(str, Enum):
    """Kind of advisory swap notification."""

    NEW_REQUEST = "new_request"
    STATUS_UPDATE = "status_update"


class RoomKind(str, Enum):
    """Kind of event-delivery room."""

    PERSONAL = "user"
    CHAT = "chat"


def personal_room(user_id: str) -> str:
    """Room key for a user's personal room."""
    return f"{RoomKind.PERSONAL.value}:{user_id}"


def chat_room(chat_id: str) -> str:
    """Room key for a chat session's room."""
    return f"{RoomKind.CHAT.value}:{chat_id}"
