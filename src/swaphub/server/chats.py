"""Chat sessions created by accepted swaps.

The ChatStore is the single path for appending messages: the REST endpoint
and the WebSocket ``send-chat-message`` frame both go through
``post_message`` so authorization and ordering are enforced once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from swaphub.core.errors import AuthorizationError, NotFoundError, ValidationError
from swaphub.core.events import ChatDetail, ChatMessage, ChatSnapshot, ChatUpdate, MessageSnapshot
from swaphub.core.types import chat_room
from swaphub.server.locks import KeyedLock
from swaphub.server.schemas import chat_to_detail, chat_to_snapshot, message_to_snapshot

if TYPE_CHECKING:
    from swaphub.server.database import Database
    from swaphub.server.models import ChatSession
    from swaphub.server.ws import EventBus

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


@dataclass
class AppendResult:
    """A persisted message and the chat-list entry it produced."""

    message: MessageSnapshot
    chat: ChatSnapshot


class ChatStore:
    """Owns chat sessions and their append-only message logs."""

    def __init__(self, db: Database, bus: EventBus) -> None:
        self._db = db
        self._bus = bus
        self._locks = KeyedLock()

    async def create_session(
        self,
        request_id: str,
        participant_a: str,
        participant_b: str,
    ) -> ChatSnapshot:
        """Create the chat for an accepted request.

        Idempotent per request: a retried accept gets the existing session.
        """
        async with self._locks.hold(f"request:{request_id}"):
            chat, created = self._db.get_or_create_chat(request_id, participant_a, participant_b)

        if created:
            logger.info("Chat %s created for swap request %s", chat.id, request_id)
        else:
            logger.info("Chat %s already exists for swap request %s", chat.id, request_id)
        return chat_to_snapshot(chat, self._db.get_last_message(chat.id))

    async def require_participant(self, chat_id: str, user_id: str) -> ChatSession:
        """Get a chat, checking the user takes part in it.

        Raises:
            NotFoundError: If the chat does not exist.
            AuthorizationError: If the user is not a participant.
        """
        chat = self._db.get_chat(chat_id)
        if chat is None:
            raise NotFoundError(f"Chat not found: {chat_id}")
        if user_id not in chat.participants:
            raise AuthorizationError("Not a participant of this chat")
        return chat

    async def append_message(self, chat_id: str, sender_id: str, content: str) -> AppendResult:
        """Append a message with a server-assigned id, sequence and timestamp.

        Raises:
            ValidationError: If the content is blank or too long.
            NotFoundError: If the chat does not exist.
            AuthorizationError: If the sender is not a participant.
        """
        text = content.strip()
        if not text:
            raise ValidationError("Message content is empty")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message longer than {MAX_MESSAGE_LENGTH} characters")

        await self.require_participant(chat_id, sender_id)

        async with self._locks.hold(chat_id):
            result = self._db.append_chat_message(chat_id, sender_id, text)
        if result is None:
            raise NotFoundError(f"Chat not found: {chat_id}")

        message, chat = result
        return AppendResult(
            message=message_to_snapshot(message),
            chat=chat_to_snapshot(chat, message),
        )

    async def post_message(self, chat_id: str, sender_id: str, content: str) -> AppendResult:
        """Append a message and broadcast it.

        The message goes to the chat room; the updated chat-list entry goes
        to both participants' personal rooms.
        """
        result = await self.append_message(chat_id, sender_id, content)

        await self._bus.publish(
            chat_room(chat_id),
            ChatMessage(chat_id=chat_id, message=result.message),
        )
        await self._bus.publish_to_users(result.chat.participants, ChatUpdate(chat=result.chat))
        return result

    async def get_session(self, chat_id: str, user_id: str) -> ChatDetail:
        """Get a chat with its full message history."""
        chat = await self.require_participant(chat_id, user_id)
        return chat_to_detail(chat, self._db.list_chat_messages(chat_id))

    async def list_for_user(self, user_id: str) -> list[ChatSnapshot]:
        """Chat-list entries of a user, most recently active first."""
        return [
            chat_to_snapshot(chat, self._db.get_last_message(chat.id))
            for chat in self._db.list_chats(user_id)
        ]
