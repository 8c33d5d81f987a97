"""Event stream listener for real-time updates.

This module provides:
- EventListener: WebSocket client that feeds server events into a
  ClientReconciler and sends chat frames

Architecture:
    Server ─push─► EventListener ─► ClientReconciler
                        │
             (on connect: join, rejoin chats, fetch authoritative state)

Room membership is lost with the connection, so every (re)connect sends
``join``, rejoins the tracked chat rooms, then replaces local state with what
the REST API reports. Events missed while disconnected are never replayed.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
import threading
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import WebSocketException

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from swaphub.client.api import SwapClient
    from swaphub.client.reconciler import ClientReconciler
    from swaphub.core.config import ServerConfig

logger = logging.getLogger(__name__)


class EventListener:
    """WebSocket listener keeping a ClientReconciler up to date.

    Usage:
        listener = EventListener(config, client, reconciler)
        listener.start()
        listener.join_chat(chat_id)
        listener.send_message(chat_id, "hello")
        ...
        listener.stop()
    """

    def __init__(
        self,
        config: ServerConfig,
        http_client: SwapClient,
        reconciler: ClientReconciler,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the listener.

        Args:
            config: Server configuration with URL and token.
            http_client: HTTP client for fetching authoritative state.
            reconciler: Local state to apply events to.
            reconnect_delay: Delay between reconnection attempts.
        """
        self._config = config
        self._http_client = http_client
        self._reconciler = reconciler
        self._reconnect_delay = reconnect_delay

        self._chat_ids: set[str] = set()

        # Connection state
        self._ws: ClientConnection | None = None
        self._connected = False
        self._should_run = False

        # Thread and loop
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._connected

    @property
    def ws_url(self) -> str:
        """Get the WebSocket URL."""
        return self._config.ws_url

    @property
    def chat_ids(self) -> set[str]:
        """Chats whose rooms are joined on every connect."""
        return set(self._chat_ids)

    # === Lifecycle ===

    def start(self) -> None:
        """Start the listener in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("EventListener already running")
            return

        self._should_run = True
        self._thread = threading.Thread(
            target=self._run_loop,
            name="EventListener",
            daemon=True,
        )
        self._thread.start()
        logger.info("EventListener started")

    def stop(self) -> None:
        """Stop the listener."""
        self._should_run = False

        if self._loop and self._stop_event:
            asyncio.run_coroutine_threadsafe(self._signal_stop(), self._loop)

        if self._loop and self._ws:
            with contextlib.suppress(TimeoutError):
                asyncio.run_coroutine_threadsafe(
                    self._close_connection(), self._loop
                ).result(timeout=2.0)

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        logger.info("EventListener stopped")

    async def _signal_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    def _run_loop(self) -> None:
        """Run the async event loop in a thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._stop_event = asyncio.Event()

        try:
            self._loop.run_until_complete(self._connection_loop())
        finally:
            self._loop.close()
            self._loop = None
            self._stop_event = None

    async def _connection_loop(self) -> None:
        """Main connection loop with automatic reconnection."""
        was_connected = False

        while self._should_run:
            try:
                await self._connect()

                if self._connected:
                    if was_connected:
                        logger.info("Reconnected, resynchronizing state...")
                    await self._identify()
                    await self._resync()

                    was_connected = True
                    await self._listen_for_messages()

            except WebSocketException as e:
                if was_connected:
                    logger.warning("EventListener disconnected: %s", e)
                logger.debug("WebSocket error: %s", e)
            except (ConnectionRefusedError, OSError) as e:
                if was_connected:
                    logger.warning("EventListener connection lost")
                logger.debug("Connection error: %s", e)
            except Exception as e:
                logger.warning("EventListener error: %s", e)
                logger.debug("Full traceback:", exc_info=True)

            if not self._should_run:
                break

            self._connected = False

            logger.info("EventListener reconnecting in %.0fs...", self._reconnect_delay)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),  # type: ignore[union-attr]
                    timeout=self._reconnect_delay,
                )
                break
            except TimeoutError:
                pass

    async def _connect(self) -> None:
        """Establish WebSocket connection."""
        ssl_context: ssl.SSLContext | None = None
        if self.ws_url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._ws = await websockets.connect(
            self.ws_url,
            ssl=ssl_context,
            open_timeout=self._config.timeout,
            close_timeout=5,
        )
        self._connected = True
        logger.info("EventListener connected")

    async def _identify(self) -> None:
        """Re-join the personal room and every tracked chat room."""
        await self._send({"type": "join"})
        for chat_id in sorted(self._chat_ids):
            await self._send({"type": "join-chat", "chat_id": chat_id})

    async def _resync(self) -> None:
        """Replace local state with the server's authoritative view."""
        loop = asyncio.get_running_loop()
        try:
            requests = await loop.run_in_executor(None, self._http_client.list_swaps)
            chats = await loop.run_in_executor(None, self._http_client.list_chats)
        except Exception as e:
            logger.warning("Failed to fetch state after connect: %s", e)
            return
        self._reconciler.reset(requests, chats)
        logger.info("Resynchronized %d requests and %d chats", len(requests), len(chats))

    async def _listen_for_messages(self) -> None:
        """Apply incoming events until the connection closes."""
        while self._should_run and self._ws:
            try:
                message = await asyncio.wait_for(self._ws.recv(), timeout=30.0)
            except TimeoutError:
                continue
            except websockets.ConnectionClosed:
                logger.info("Connection closed by server")
                break
            self._handle_message(message)

    def _handle_message(self, message: str | bytes) -> None:
        """Apply one frame from the server."""
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        event = self._reconciler.apply_raw(message)
        if event is not None:
            logger.debug("Applied %s", event.event)

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            return
        await self._ws.send(json.dumps(payload))

    async def _close_connection(self) -> None:
        """Close the WebSocket connection."""
        if self._ws:
            with contextlib.suppress(WebSocketException):
                await self._ws.close()
            self._ws = None
        self._connected = False

    # === Outbound frames (callable from any thread) ===

    def _submit(self, payload: dict[str, Any]) -> bool:
        """Send a frame from outside the listener thread.

        Returns:
            False if not connected; the frame is dropped.
        """
        if not self._connected or self._loop is None:
            return False
        future = asyncio.run_coroutine_threadsafe(self._send(payload), self._loop)
        try:
            future.result(timeout=self._config.timeout)
        except (WebSocketException, TimeoutError) as e:
            logger.warning("Failed to send %s: %s", payload.get("type"), e)
            return False
        return True

    def join_chat(self, chat_id: str) -> bool:
        """Track a chat room and join it now if connected."""
        self._chat_ids.add(chat_id)
        return self._submit({"type": "join-chat", "chat_id": chat_id})

    def leave_chat(self, chat_id: str) -> bool:
        """Stop tracking a chat room."""
        self._chat_ids.discard(chat_id)
        return self._submit({"type": "leave-chat", "chat_id": chat_id})

    def send_message(self, chat_id: str, content: str) -> bool:
        """Send a chat message over the socket."""
        return self._submit({"type": "send-chat-message", "chat_id": chat_id, "content": content})

    def delete_chat(self, chat_id: str) -> bool:
        """Tell the other members of a chat room it was deleted."""
        self._chat_ids.discard(chat_id)
        return self._submit({"type": "delete-chat", "chat_id": chat_id})
