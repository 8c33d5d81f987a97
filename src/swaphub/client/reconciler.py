"""Client-side reconciliation of pushed events.

This module provides:
- ClientReconciler: local view of requests, items and chats kept in sync by
  applying server events

Delivery is at-least-once and only ordered within one room, so every handler
is idempotent: entities are replaced whole unless the held copy has a later
``updated_at``, removals of missing ids are no-ops, and messages are
deduplicated by id. Events buffered while a resync was running therefore
cannot roll a fresher snapshot back. After a (re)connect the listener calls
``reset`` with the authoritative state fetched over HTTP.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from swaphub.core.events import (
    EVENT_TYPES,
    ChatDeleted,
    ChatMessage,
    ChatSnapshot,
    ChatUpdate,
    ErrorEvent,
    Event,
    ItemSnapshot,
    MessageSnapshot,
    RequestCreated,
    RequestRemoved,
    RequestUpdated,
    SwapAccepted,
    SwapNotification,
    SwapRequestSnapshot,
    parse_event,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[Event], None]


class _Stamped(Protocol):
    @property
    def updated_at(self) -> datetime: ...


S = TypeVar("S", bound=_Stamped)


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _upsert(store: dict[str, S], key: str, incoming: S) -> bool:
    """Store ``incoming`` unless the held copy is strictly newer."""
    current = store.get(key)
    if current is not None and _utc(current.updated_at) > _utc(incoming.updated_at):
        return False
    store[key] = incoming
    return True


class ClientReconciler:
    """Thread-safe local state for one connected client."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[str, SwapRequestSnapshot] = {}
        self._items: dict[str, ItemSnapshot] = {}
        self._chats: dict[str, ChatSnapshot] = {}
        self._messages: dict[str, dict[str, MessageSnapshot]] = {}
        self._notifications: list[SwapNotification] = []
        self._errors: list[ErrorEvent] = []
        self._callbacks: list[EventCallback] = []

        self._handlers: dict[type[BaseModel], Callable[[Any], None]] = {
            RequestCreated: self._on_request_upsert,
            RequestUpdated: self._on_request_upsert,
            RequestRemoved: self._on_request_removed,
            SwapAccepted: self._on_swap_accepted,
            ChatMessage: self._on_chat_message,
            ChatUpdate: self._on_chat_update,
            ChatDeleted: self._on_chat_deleted,
            SwapNotification: self._on_notification,
            ErrorEvent: self._on_error,
        }
        missing = set(EVENT_TYPES) - set(self._handlers)
        if missing:
            names = ", ".join(sorted(t.__name__ for t in missing))
            raise TypeError(f"No reconciler handler for: {names}")

    # === Applying events ===

    def apply(self, event: Event) -> None:
        """Apply one event to the local state."""
        with self._lock:
            self._handlers[type(event)](event)
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Event callback failed")

    def apply_raw(self, raw: str | bytes) -> Event | None:
        """Parse and apply a raw frame.

        Returns:
            The applied event, or None if the frame was not a known event.
        """
        try:
            event = parse_event(raw)
        except PydanticValidationError:
            logger.warning("Ignoring unknown frame: %s", str(raw)[:100])
            return None
        self.apply(event)
        return event

    def add_callback(self, callback: EventCallback) -> None:
        """Call ``callback`` after each applied event."""
        self._callbacks.append(callback)

    def reset(
        self,
        requests: Iterable[SwapRequestSnapshot],
        chats: Iterable[ChatSnapshot],
        items: Iterable[ItemSnapshot] | None = None,
    ) -> None:
        """Replace local state with an authoritative snapshot."""
        with self._lock:
            self._requests = {r.id: r for r in requests}
            self._chats = {c.id: c for c in chats}
            if items is not None:
                self._items = {i.id: i for i in items}
            for chat_id in list(self._messages):
                if chat_id not in self._chats:
                    del self._messages[chat_id]

    def load_messages(self, chat_id: str, messages: Iterable[MessageSnapshot]) -> None:
        """Seed a chat's history (e.g., from ``SwapClient.get_chat``)."""
        with self._lock:
            bucket = self._messages.setdefault(chat_id, {})
            for message in messages:
                bucket[message.id] = message

    # === Handlers (called with the lock held) ===

    def _on_request_upsert(self, event: RequestCreated | RequestUpdated) -> None:
        if not _upsert(self._requests, event.request.id, event.request):
            logger.debug("Ignoring stale snapshot of request %s", event.request.id)

    def _on_request_removed(self, event: RequestRemoved) -> None:
        self._requests.pop(event.request_id, None)

    def _on_swap_accepted(self, event: SwapAccepted) -> None:
        _upsert(self._requests, event.request.id, event.request)
        _upsert(self._items, event.offered_item.id, event.offered_item)
        _upsert(self._items, event.desired_item.id, event.desired_item)

    def _on_chat_message(self, event: ChatMessage) -> None:
        self._messages.setdefault(event.chat_id, {})[event.message.id] = event.message

    def _on_chat_update(self, event: ChatUpdate) -> None:
        _upsert(self._chats, event.chat.id, event.chat)

    def _on_chat_deleted(self, event: ChatDeleted) -> None:
        self._chats.pop(event.chat_id, None)
        self._messages.pop(event.chat_id, None)

    def _on_notification(self, event: SwapNotification) -> None:
        # Advisory only; state arrives through the entity events
        self._notifications.append(event)

    def _on_error(self, event: ErrorEvent) -> None:
        logger.warning("Server rejected a message: %s (%s)", event.detail, event.code)
        self._errors.append(event)

    # === Accessors ===

    @property
    def requests(self) -> list[SwapRequestSnapshot]:
        """Known requests, newest first."""
        with self._lock:
            return sorted(self._requests.values(), key=lambda r: r.created_at, reverse=True)

    def get_request(self, request_id: str) -> SwapRequestSnapshot | None:
        """A known request by ID."""
        with self._lock:
            return self._requests.get(request_id)

    @property
    def items(self) -> list[ItemSnapshot]:
        """Known item snapshots."""
        with self._lock:
            return list(self._items.values())

    def get_item(self, item_id: str) -> ItemSnapshot | None:
        """A known item by ID."""
        with self._lock:
            return self._items.get(item_id)

    @property
    def chats(self) -> list[ChatSnapshot]:
        """Chat-list entries, most recently active first."""
        with self._lock:
            return sorted(self._chats.values(), key=lambda c: c.updated_at, reverse=True)

    def get_chat(self, chat_id: str) -> ChatSnapshot | None:
        """A chat-list entry by ID."""
        with self._lock:
            return self._chats.get(chat_id)

    def messages(self, chat_id: str) -> list[MessageSnapshot]:
        """Messages of a chat in server order."""
        with self._lock:
            return sorted(self._messages.get(chat_id, {}).values(), key=lambda m: m.seq)

    @property
    def notifications(self) -> list[SwapNotification]:
        """Advisory notifications received so far."""
        with self._lock:
            return list(self._notifications)

    @property
    def errors(self) -> list[ErrorEvent]:
        """Error replies received so far."""
        with self._lock:
            return list(self._errors)
