"""Pytest fixtures for server tests.

Provides an isolated database with a few users and items, the in-process
services wired together, and mock WebSockets that record what they were sent.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from swaphub.server.chats import ChatStore
from swaphub.server.database import Database
from swaphub.server.ledger import SwapLedger
from swaphub.server.models import Item
from swaphub.server.ws import EventBus


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def alice(db: Database) -> str:
    """User ID of alice."""
    return db.create_user("alice", "not-a-real-hash").id


@pytest.fixture
def bob(db: Database) -> str:
    """User ID of bob."""
    return db.create_user("bob", "not-a-real-hash").id


@pytest.fixture
def carol(db: Database) -> str:
    """User ID of carol, a bystander."""
    return db.create_user("carol", "not-a-real-hash").id


@pytest.fixture
def bike(db: Database, alice: str) -> Item:
    """An item owned by alice."""
    return db.create_item(alice, "Bike")


@pytest.fixture
def guitar(db: Database, bob: str) -> Item:
    """An item owned by bob."""
    return db.create_item(bob, "Guitar")


@pytest.fixture
def bus() -> EventBus:
    """Create a fresh EventBus."""
    return EventBus()


@pytest.fixture
def chats(db: Database, bus: EventBus) -> ChatStore:
    """Create a ChatStore on the test database."""
    return ChatStore(db, bus)


@pytest.fixture
def ledger(db: Database, chats: ChatStore, bus: EventBus) -> SwapLedger:
    """Create a SwapLedger on the test database."""
    return SwapLedger(db, chats, bus)


@pytest.fixture
def make_ws() -> Callable[[], MagicMock]:
    """Factory of mock WebSockets."""

    def factory() -> MagicMock:
        ws = MagicMock()
        ws.accept = AsyncMock()
        ws.close = AsyncMock()
        ws.send_text = AsyncMock()
        ws.client_state = WebSocketState.CONNECTED
        return ws

    return factory


@pytest.fixture
def sent(bus: EventBus) -> Callable[[MagicMock], Awaitable[list[dict[str, Any]]]]:
    """Decode the frames a mock WebSocket was sent, once the bus has drained."""

    async def decode(ws: MagicMock) -> list[dict[str, Any]]:
        await bus.drain()
        return [json.loads(c.args[0]) for c in ws.send_text.call_args_list]

    return decode
