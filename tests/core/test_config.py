"""Tests for core configuration classes."""

from __future__ import annotations

from swaphub.core.config import ServerConfig


class TestServerConfig:
    """Tests for ServerConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = ServerConfig(server_url="https://swap.example.com", token="sh_abc")
        assert config.server_url == "https://swap.example.com"
        assert config.token == "sh_abc"
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = ServerConfig(server_url="https://swap.example.com/", token="sh_abc")
        assert config.server_url == "https://swap.example.com"

    def test_ws_url_https(self) -> None:
        """Should convert HTTPS to WSS for WebSocket URL."""
        config = ServerConfig(server_url="https://swap.example.com", token="sh_abc")
        assert config.ws_url == "wss://swap.example.com/ws?token=sh_abc"

    def test_ws_url_http(self) -> None:
        """Should convert HTTP to WS for WebSocket URL."""
        config = ServerConfig(server_url="http://localhost:8000", token="sh_abc")
        assert config.ws_url == "ws://localhost:8000/ws?token=sh_abc"

    def test_ws_url_quotes_token(self) -> None:
        """Token characters unsafe in a query string are escaped."""
        config = ServerConfig(server_url="http://localhost:8000", token="a+b/c=")
        assert config.ws_url == "ws://localhost:8000/ws?token=a%2Bb%2Fc%3D"

    def test_is_secure(self) -> None:
        """Only HTTPS URLs are secure."""
        assert ServerConfig(server_url="https://swap.example.com", token="t").is_secure is True
        assert ServerConfig(server_url="http://localhost:8000", token="t").is_secure is False
