"""Core module - Shared types, errors, events and configuration."""

from swaphub.core.config import ServerConfig
from swaphub.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    StateError,
    SwapHubError,
    ValidationError,
)
from swaphub.core.events import EVENT_TYPES, Event, parse_event
from swaphub.core.types import NotificationKind, RoomKind, SwapStatus

__all__ = [
    # Config
    "ServerConfig",
    # Errors
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "StateError",
    "SwapHubError",
    "ValidationError",
    # Events
    "EVENT_TYPES",
    "Event",
    "parse_event",
    # Types
    "NotificationKind",
    "RoomKind",
    "SwapStatus",
]
