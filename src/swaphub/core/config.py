"""Shared configuration classes for swaphub.

This module defines configuration used by the HTTP client, the event
listener and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote


@dataclass
class ServerConfig:
    """Configuration for connecting to a SwapHub server.

    Used by both the HTTP client (SwapClient) and the WebSocket client
    (EventListener) to ensure consistent connection settings.

    Attributes:
        server_url: Base URL of the server (e.g., "https://swap.example.com").
        token: Bearer token of the signed-in user.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Get the WebSocket URL for the event stream.

        Returns:
            WebSocket URL with the token as query parameter.
        """
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return f"{url}/ws?token={quote(self.token, safe='')}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS."""
        return self.server_url.startswith("https://")
