"""HTTP client for SwapHub server API.

This module provides:
- SwapClient: HTTP client for communicating with the server
- Account, item, swap request and chat operations
- Mapping of HTTP errors back to the shared error taxonomy
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from swaphub.core.config import ServerConfig
from swaphub.core.errors import ERRORS_BY_STATUS, SwapHubError, error_from_code
from swaphub.core.events import (
    ChatDetail,
    ChatSnapshot,
    ItemSnapshot,
    MessageSnapshot,
    SwapRequestSnapshot,
)

logger = logging.getLogger(__name__)


class APIError(SwapHubError):
    """Error response outside the taxonomy (5xx, unexpected 4xx)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code or 500


def error_from_response(response: httpx.Response) -> SwapHubError:
    """Build the taxonomy error matching an error response."""
    try:
        detail: Any = response.json().get("detail")
    except ValueError:
        detail = response.text

    if isinstance(detail, dict) and "code" in detail:
        return error_from_code(str(detail["code"]), str(detail.get("message", "")))

    error_cls = ERRORS_BY_STATUS.get(response.status_code)
    message = detail if isinstance(detail, str) else str(detail or "Unknown error")
    if error_cls is None:
        return APIError(message, response.status_code)
    return error_cls(message)


class SwapClient:
    """HTTP client for SwapHub server API."""

    def __init__(
        self,
        server_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            server_url: Base URL of the server.
            token: Bearer token (None before login).
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._server_url = server_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=self._server_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: ServerConfig) -> SwapClient:
        """Create a client from a ServerConfig."""
        return cls(config.server_url, config.token, timeout=config.timeout)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> SwapClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the matching taxonomy error for error responses."""
        if response.status_code >= 400:
            raise error_from_response(response)
        return response

    def _set_token(self, token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {token}"

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy."""
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Account operations ===

    def register(self, username: str, password: str) -> dict[str, Any]:
        """Register a user; the client switches to the new token.

        Returns:
            Dict with ``token`` and ``user``.
        """
        response = self._client.post(
            "/api/users/register", json={"username": username, "password": password}
        )
        data: dict[str, Any] = self._handle_response(response).json()
        self._set_token(data["token"])
        return data

    def login(self, username: str, password: str) -> dict[str, Any]:
        """Sign in; the client switches to the issued token.

        Returns:
            Dict with ``token`` and ``user``.
        """
        response = self._client.post(
            "/api/users/login", json={"username": username, "password": password}
        )
        data: dict[str, Any] = self._handle_response(response).json()
        self._set_token(data["token"])
        return data

    def me(self) -> dict[str, Any]:
        """Get the signed-in user."""
        data: dict[str, Any] = self._handle_response(self._client.get("/api/users/me")).json()
        return data

    # === Item operations ===

    def create_item(self, title: str) -> ItemSnapshot:
        """Post a new item."""
        response = self._client.post("/api/items", json={"title": title})
        return ItemSnapshot.model_validate(self._handle_response(response).json())

    def list_items(self, owner: str | None = None) -> list[ItemSnapshot]:
        """List items, optionally of one owner ("me" for the caller)."""
        params = {"owner": owner} if owner else None
        response = self._handle_response(self._client.get("/api/items", params=params))
        return [ItemSnapshot.model_validate(i) for i in response.json()]

    # === Swap operations ===

    def create_swap(self, offered_item_id: str, desired_item_id: str) -> SwapRequestSnapshot:
        """Propose a swap."""
        response = self._client.post(
            "/api/swaps",
            json={"offered_item_id": offered_item_id, "desired_item_id": desired_item_id},
        )
        return SwapRequestSnapshot.model_validate(self._handle_response(response).json())

    def list_swaps(self) -> list[SwapRequestSnapshot]:
        """List requests the user sent or received."""
        response = self._handle_response(self._client.get("/api/swaps"))
        return [SwapRequestSnapshot.model_validate(r) for r in response.json()]

    def accept_swap(self, request_id: str) -> tuple[SwapRequestSnapshot, ChatSnapshot]:
        """Accept a request.

        Returns:
            Tuple of (updated request, new chat).
        """
        response = self._handle_response(self._client.post(f"/api/swaps/{request_id}/accept"))
        data = response.json()
        return (
            SwapRequestSnapshot.model_validate(data["request"]),
            ChatSnapshot.model_validate(data["chat"]),
        )

    def reject_swap(self, request_id: str) -> SwapRequestSnapshot:
        """Reject a request."""
        response = self._handle_response(self._client.post(f"/api/swaps/{request_id}/reject"))
        return SwapRequestSnapshot.model_validate(response.json())

    def remove_swap(self, request_id: str) -> None:
        """Remove an accepted or rejected request."""
        self._handle_response(self._client.delete(f"/api/swaps/{request_id}"))

    # === Chat operations ===

    def list_chats(self) -> list[ChatSnapshot]:
        """List chat-list entries."""
        response = self._handle_response(self._client.get("/api/chats"))
        return [ChatSnapshot.model_validate(c) for c in response.json()]

    def get_chat(self, chat_id: str) -> ChatDetail:
        """Get a chat with its messages."""
        response = self._handle_response(self._client.get(f"/api/chats/{chat_id}"))
        return ChatDetail.model_validate(response.json())

    def send_message(self, chat_id: str, content: str) -> MessageSnapshot:
        """Post a chat message."""
        response = self._client.post(f"/api/chats/{chat_id}/messages", json={"content": content})
        return MessageSnapshot.model_validate(self._handle_response(response).json())
