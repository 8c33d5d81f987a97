"""WebSocket event bus and room router.

This module provides:
- EventBus: in-memory room membership and best-effort event fan-out
- The /ws endpoint translating inbound frames into bus and chat operations

Architecture:
    SwapLedger / ChatStore ──publish(room, event)──► EventBus ──ws──► clients
                                                        │
                                             (room key -> connections)

Room keys are ``user:<id>`` (personal, joined on connect) and ``chat:<id>``
(joined explicitly after a participant check). Membership lives only here and
is rebuilt as clients reconnect; it is never consulted for business state.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from swaphub.core.errors import (
    AuthenticationError,
    AuthorizationError,
    SwapHubError,
    ValidationError,
)
from swaphub.core.events import ChatDeleted, ErrorEvent
from swaphub.core.types import chat_room, personal_room

if TYPE_CHECKING:
    from swaphub.server.chats import ChatStore
    from swaphub.server.database import Database

logger = logging.getLogger(__name__)

# Frames a connection may fall behind before it is dropped
OUTBOX_SIZE = 256


@dataclass(eq=False)
class Connection:
    """A live WebSocket connection of one user.

    Compared by identity: one user may hold several connections.

    Attributes:
        websocket: The underlying socket.
        user_id: Authenticated user of the connection.
        id: Opaque connection ID for logging.
        rooms: Rooms this connection is currently in.
        connected_at: When the connection was registered.
        outbox: Frames waiting to be written, in publish order.
        writer: Task draining the outbox into the socket.
    """

    websocket: WebSocket
    user_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    outbox: asyncio.Queue[str] = field(
        default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_SIZE)
    )
    writer: asyncio.Task[None] | None = None


class EventBus:
    """Room membership and fan-out of typed events.

    Delivery is fire-and-forget: no retry, no persistence. Publishing only
    queues the frame on each member's outbox, so a slow or stalled socket
    never holds up the operation that produced the event. Each connection
    has one writer task draining its outbox in order, which keeps events
    of a room in publish order for every member. A send that fails, or an
    outbox that fills up, drops the connection from every room; publishing
    to an empty room is a no-op.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[Connection]] = {}
        self._connections: set[Connection] = set()
        self._lock = asyncio.Lock()

    # === Membership ===

    async def connect(self, websocket: WebSocket, user_id: str) -> Connection:
        """Accept a socket and join it to its user's personal room.

        The accept happens under the membership lock so no publish can
        observe the socket before it is in its personal room.
        """
        connection = Connection(websocket=websocket, user_id=user_id)

        async with self._lock:
            await websocket.accept()
            self._connections.add(connection)
            self._add(connection, personal_room(user_id))
            connection.writer = asyncio.create_task(
                self._write_loop(connection), name=f"ws-writer-{connection.id}"
            )

        logger.info("Connection %s opened for user %s", connection.id, user_id)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Silently drop a connection from all rooms."""
        async with self._lock:
            if connection not in self._connections:
                return
            self._connections.discard(connection)
            for room in list(connection.rooms):
                self._remove(connection, room)

        writer = connection.writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
        _discard_pending(connection.outbox)

        logger.info("Connection %s closed for user %s", connection.id, connection.user_id)

    async def close(self) -> None:
        """Drop every connection (shutdown)."""
        for connection in list(self._connections):
            await self.disconnect(connection)

    async def join_room(self, connection: Connection, room: str) -> bool:
        """Add a connection to a room.

        Returns:
            False if it was already a member.
        """
        async with self._lock:
            if connection not in self._connections:
                return False
            if room in connection.rooms:
                return False
            self._add(connection, room)

        logger.debug("Connection %s joined %s", connection.id, room)
        return True

    async def leave_room(self, connection: Connection, room: str) -> bool:
        """Remove a connection from a room.

        Returns:
            False if it was not a member.
        """
        async with self._lock:
            if room not in connection.rooms:
                return False
            self._remove(connection, room)

        logger.debug("Connection %s left %s", connection.id, room)
        return True

    def _add(self, connection: Connection, room: str) -> None:
        self._rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)

    def _remove(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[room]
        connection.rooms.discard(room)

    def members(self, room: str) -> set[Connection]:
        """Connections currently in a room."""
        return set(self._rooms.get(room, ()))

    def rooms_of(self, connection: Connection) -> set[str]:
        """Rooms a connection is currently in."""
        return set(connection.rooms)

    def rooms(self) -> list[str]:
        """Keys of all non-empty rooms."""
        return list(self._rooms)

    @property
    def connection_count(self) -> int:
        """Number of live connections."""
        return len(self._connections)

    # === Delivery ===

    async def publish(
        self,
        room: str,
        event: BaseModel,
        exclude: Connection | None = None,
    ) -> int:
        """Queue an event for every connection in a room.

        Returns without waiting for any socket write.

        Args:
            room: Room key.
            event: Event model from ``swaphub.core.events``.
            exclude: Optional connection to skip (e.g., the sender).

        Returns:
            Number of connections the event was queued for.
        """
        message = event.model_dump_json()
        dead: list[Connection] = []
        queued = 0

        async with self._lock:
            for connection in self._rooms.get(room, ()):
                if connection is exclude:
                    continue
                if self._enqueue(connection, message):
                    queued += 1
                else:
                    dead.append(connection)

        for connection in dead:
            await self.disconnect(connection)

        if queued:
            logger.debug("Published %s to %s (%d queued)", _event_tag(event), room, queued)
        else:
            logger.debug("No one in %s for %s", room, _event_tag(event))
        return queued

    async def publish_to_users(self, user_ids: Iterable[str], event: BaseModel) -> int:
        """Queue an event for the personal room of each distinct user."""
        queued = 0
        for user_id in dict.fromkeys(user_ids):
            queued += await self.publish(personal_room(user_id), event)
        return queued

    async def send_to(self, connection: Connection, event: BaseModel) -> bool:
        """Queue an event for a single connection (replies, errors)."""
        async with self._lock:
            if connection not in self._connections:
                return False
            queued = self._enqueue(connection, event.model_dump_json())
        if not queued:
            await self.disconnect(connection)
        return queued

    async def drain(self) -> None:
        """Wait until every live connection has written its queued frames."""
        await asyncio.gather(*(c.outbox.join() for c in list(self._connections)))

    def _enqueue(self, connection: Connection, message: str) -> bool:
        if connection.websocket.client_state != WebSocketState.CONNECTED:
            return False
        try:
            connection.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Connection %s fell behind, dropping it", connection.id)
            return False
        return True

    async def _write_loop(self, connection: Connection) -> None:
        while True:
            message = await connection.outbox.get()
            try:
                sent = await self._send(connection, message)
            finally:
                connection.outbox.task_done()
            if not sent:
                await self.disconnect(connection)
                return

    async def _send(self, connection: Connection, message: str) -> bool:
        websocket = connection.websocket
        try:
            if websocket.client_state != WebSocketState.CONNECTED:
                return False
            await websocket.send_text(message)
        except Exception as e:
            logger.debug("Send to connection %s failed: %s", connection.id, e)
            return False
        return True


def _discard_pending(outbox: asyncio.Queue[str]) -> None:
    while True:
        try:
            outbox.get_nowait()
        except asyncio.QueueEmpty:
            return
        outbox.task_done()


def _event_tag(event: BaseModel) -> str:
    return str(getattr(event, "event", type(event).__name__))


# === Inbound messages ===


def _required(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Missing field: {key}")
    return value


async def handle_inbound_message(
    bus: EventBus,
    chats: ChatStore,
    connection: Connection,
    data: dict[str, Any],
) -> None:
    """Handle one inbound frame from a client.

    Expected message formats:
        {"type": "join", "user_id": "..."}
        {"type": "join-chat", "chat_id": "..."}
        {"type": "leave-chat", "chat_id": "..."}
        {"type": "send-chat-message", "chat_id": "...", "content": "...", "sender_id": "..."}
        {"type": "delete-chat", "chat_id": "..."}

    Identity always comes from the authenticated connection; a user_id or
    sender_id in the frame must match it.

    Raises:
        SwapHubError: For any rejected message.
    """
    msg_type = data.get("type")

    if msg_type == "join":
        claimed = data.get("user_id")
        if claimed is not None and claimed != connection.user_id:
            raise AuthorizationError("Cannot join another user's room")
        await bus.join_room(connection, personal_room(connection.user_id))

    elif msg_type == "join-chat":
        chat_id = _required(data, "chat_id")
        await chats.require_participant(chat_id, connection.user_id)
        await bus.join_room(connection, chat_room(chat_id))

    elif msg_type == "leave-chat":
        chat_id = _required(data, "chat_id")
        await bus.leave_room(connection, chat_room(chat_id))

    elif msg_type == "send-chat-message":
        chat_id = _required(data, "chat_id")
        sender = data.get("sender_id")
        if sender is not None and sender != connection.user_id:
            raise AuthorizationError("Cannot send messages as another user")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValidationError("Missing field: content")
        await chats.post_message(chat_id, connection.user_id, content)

    elif msg_type == "delete-chat":
        chat_id = _required(data, "chat_id")
        await chats.require_participant(chat_id, connection.user_id)
        await bus.publish(
            chat_room(chat_id),
            ChatDeleted(chat_id=chat_id, deleted_by=connection.user_id),
            exclude=connection,
        )

    else:
        raise ValidationError(f"Unknown message type: {msg_type}")


# WebSocket router
router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_events(websocket: WebSocket, token: str | None = None) -> None:
    """WebSocket endpoint for the event stream.

    Clients connect with their bearer token as query parameter and are
    joined to their personal room. Failed inbound messages are answered
    with an ``error`` event; the socket stays open.

    Args:
        websocket: The WebSocket connection.
        token: Bearer token.
    """
    db: Database = websocket.app.state.db
    bus: EventBus = websocket.app.state.bus
    chats: ChatStore = websocket.app.state.chats

    try:
        user_id = db.resolve_caller(token)
    except AuthenticationError as e:
        await websocket.close(code=4001, reason=e.message)
        return

    connection = await bus.connect(websocket, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValidationError("Message must be a JSON object")
                await handle_inbound_message(bus, chats, connection, data)
            except json.JSONDecodeError:
                await bus.send_to(
                    connection,
                    ErrorEvent(code=ValidationError.code, detail="Invalid JSON"),
                )
            except SwapHubError as e:
                logger.info("Rejected message from connection %s: %s", connection.id, e.message)
                await bus.send_to(connection, ErrorEvent(code=e.code, detail=e.message))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception("Error in event WebSocket: %s", e)
    finally:
        await bus.disconnect(connection)
