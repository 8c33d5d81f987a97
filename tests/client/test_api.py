"""Tests for the SwapHub HTTP client."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from swaphub.client.api import APIError, SwapClient, error_from_response
from swaphub.core.config import ServerConfig
from swaphub.core.errors import AuthorizationError, NotFoundError, StateError
from swaphub.core.types import SwapStatus

NOW = "2025-01-01T12:00:00Z"

REQUEST = {
    "id": "r1",
    "offered_item_id": "i1",
    "desired_item_id": "i2",
    "sender_id": "alice",
    "receiver_id": "bob",
    "status": "pending",
    "created_at": NOW,
    "updated_at": NOW,
}

CHAT = {
    "id": "c1",
    "request_id": "r1",
    "participants": ["alice", "bob"],
    "created_at": NOW,
    "updated_at": NOW,
    "last_message": None,
}

Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler, token: str | None = "sh_token") -> SwapClient:
    """Create a SwapClient backed by a mock transport."""
    return SwapClient("http://test", token=token, transport=httpx.MockTransport(handler))


class TestErrorMapping:
    """Tests for error_from_response."""

    def test_taxonomy_detail(self) -> None:
        """A code in the detail rebuilds the same error class."""
        response = httpx.Response(
            409, json={"detail": {"code": "StateError", "message": "Request is already accepted"}}
        )
        error = error_from_response(response)
        assert isinstance(error, StateError)
        assert error.message == "Request is already accepted"

    def test_plain_detail_uses_status(self) -> None:
        """Plain details fall back to the HTTP status."""
        error = error_from_response(httpx.Response(404, json={"detail": "Not Found"}))
        assert isinstance(error, NotFoundError)

    def test_unexpected_status(self) -> None:
        """Statuses outside the taxonomy become APIError."""
        error = error_from_response(httpx.Response(502, text="Bad gateway"))
        assert isinstance(error, APIError)
        assert error.status_code == 502


class TestSwapClient:
    """Tests for SwapClient requests."""

    def test_sends_bearer_token(self) -> None:
        """The token is sent on every request."""
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json=[])

        with make_client(handler) as client:
            assert client.list_swaps() == []
        assert seen == ["Bearer sh_token"]

    def test_login_switches_token(self) -> None:
        """After login the issued token is used."""
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            if request.url.path == "/api/users/login":
                body = json.loads(request.content)
                return httpx.Response(
                    200,
                    json={"token": "sh_new", "user": {"id": "u1", "username": body["username"]}},
                )
            return httpx.Response(200, json=[])

        with make_client(handler, token=None) as client:
            data = client.login("alice", "password123")
            client.list_chats()

        assert data["user"]["username"] == "alice"
        assert seen == [None, "Bearer sh_new"]

    def test_accept_swap(self) -> None:
        """Accept returns the request and the chat."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/api/swaps/r1/accept"
            accepted = {**REQUEST, "status": "accepted"}
            return httpx.Response(200, json={"request": accepted, "chat_id": "c1", "chat": CHAT})

        with make_client(handler) as client:
            request, chat = client.accept_swap("r1")

        assert request.status == SwapStatus.ACCEPTED
        assert chat.id == "c1"
        assert chat.participants == ["alice", "bob"]

    def test_create_swap(self) -> None:
        """Create posts both item IDs."""
        captured: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.update(json.loads(request.content))
            return httpx.Response(201, json=REQUEST)

        with make_client(handler) as client:
            request = client.create_swap("i1", "i2")

        assert captured == {"offered_item_id": "i1", "desired_item_id": "i2"}
        assert request.id == "r1"

    def test_error_raised(self) -> None:
        """Error responses raise taxonomy errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                json={"detail": {"code": "AuthorizationError", "message": "Not the receiver"}},
            )

        with make_client(handler) as client, pytest.raises(AuthorizationError):
            client.reject_swap("r1")

    def test_remove_swap(self) -> None:
        """Remove sends DELETE and expects no body."""
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(204)

        with make_client(handler) as client:
            client.remove_swap("r1")
        assert methods == ["DELETE"]

    def test_send_message(self) -> None:
        """Send returns the stored message."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"content": "Hi!"}
            return httpx.Response(
                201,
                json={
                    "id": "m1",
                    "chat_id": "c1",
                    "seq": 1,
                    "sender_id": "alice",
                    "content": "Hi!",
                    "created_at": NOW,
                },
            )

        with make_client(handler) as client:
            message = client.send_message("c1", "Hi!")
        assert message.seq == 1

    def test_health_check_unreachable(self) -> None:
        """Connection errors report unhealthy instead of raising."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with make_client(handler) as client:
            assert client.health_check() is False

    def test_from_config(self) -> None:
        """Clients can be built from a ServerConfig."""
        client = SwapClient.from_config(ServerConfig(server_url="http://test/", token="sh_x"))
        try:
            assert client._client.headers["Authorization"] == "Bearer sh_x"
            assert client._client.base_url.host == "test"
        finally:
            client.close()
