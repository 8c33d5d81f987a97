"""Swap, chat and live event commands for SwapHub CLI.

Commands:
- swap create/list/accept/reject/remove: Swap request lifecycle
- chat list/show/send: Chats of accepted swaps
- listen: Stream live events (optionally chatting in one chat)
"""

from __future__ import annotations

import logging
import sys
import time
from typing import NoReturn

import click

from swaphub.client.api import SwapClient
from swaphub.client.cli.config import require_server_config
from swaphub.core.errors import SwapHubError
from swaphub.core.events import (
    ChatDeleted,
    ChatMessage,
    ChatUpdate,
    ErrorEvent,
    Event,
    RequestCreated,
    RequestRemoved,
    RequestUpdated,
    SwapAccepted,
    SwapNotification,
    SwapRequestSnapshot,
)


def _client() -> SwapClient:
    return SwapClient.from_config(require_server_config())


def _fail(error: SwapHubError) -> NoReturn:
    click.echo(f"Error: {error.message} ({error.code})", err=True)
    sys.exit(1)


def _format_request(request: SwapRequestSnapshot) -> str:
    return (
        f"{request.id}  {request.status.value:<8}  "
        f"{request.sender_id} offers {request.offered_item_id} "
        f"for {request.receiver_id}'s {request.desired_item_id}"
    )


# === Swap requests ===


@click.group()
def swap() -> None:
    """Swap request commands."""


@swap.command("create")
@click.argument("offered_item_id")
@click.argument("desired_item_id")
def swap_create(offered_item_id: str, desired_item_id: str) -> None:
    """Offer one of your items for someone else's item."""
    try:
        with _client() as client:
            request = client.create_swap(offered_item_id, desired_item_id)
    except SwapHubError as e:
        _fail(e)
    click.echo(f"Swap request sent: {request.id}")


@swap.command("list")
def swap_list() -> None:
    """List swap requests you sent or received."""
    try:
        with _client() as client:
            requests = client.list_swaps()
    except SwapHubError as e:
        _fail(e)

    if not requests:
        click.echo("No swap requests.")
        return
    for request in requests:
        click.echo(_format_request(request))


@swap.command("accept")
@click.argument("request_id")
def swap_accept(request_id: str) -> None:
    """Accept a swap request you received."""
    try:
        with _client() as client:
            request, chat = client.accept_swap(request_id)
    except SwapHubError as e:
        _fail(e)
    click.echo(f"Swap request {request.id} accepted.")
    click.echo(f"Chat opened: {chat.id}")


@swap.command("reject")
@click.argument("request_id")
def swap_reject(request_id: str) -> None:
    """Reject a swap request you received."""
    try:
        with _client() as client:
            request = client.reject_swap(request_id)
    except SwapHubError as e:
        _fail(e)
    click.echo(f"Swap request {request.id} rejected.")


@swap.command("remove")
@click.argument("request_id")
def swap_remove(request_id: str) -> None:
    """Remove an accepted or rejected request."""
    try:
        with _client() as client:
            client.remove_swap(request_id)
    except SwapHubError as e:
        _fail(e)
    click.echo(f"Swap request {request_id} removed.")


# === Chats ===


@click.group()
def chat() -> None:
    """Chat commands."""


@chat.command("list")
def chat_list() -> None:
    """List your chats, most recently active first."""
    try:
        with _client() as client:
            chats = client.list_chats()
    except SwapHubError as e:
        _fail(e)

    if not chats:
        click.echo("No chats.")
        return
    for entry in chats:
        last = entry.last_message.content if entry.last_message else "(no messages)"
        click.echo(f"{entry.id}  with {', '.join(entry.participants)}  {last[:40]}")


@chat.command("show")
@click.argument("chat_id")
def chat_show(chat_id: str) -> None:
    """Show the message history of a chat."""
    try:
        with _client() as client:
            detail = client.get_chat(chat_id)
    except SwapHubError as e:
        _fail(e)

    click.echo(f"Chat {detail.id} (swap request {detail.request_id})")
    for message in detail.messages:
        stamp = message.created_at.strftime("%Y-%m-%d %H:%M")
        click.echo(f"[{stamp}] {message.sender_id}: {message.content}")


@chat.command("send")
@click.argument("chat_id")
@click.argument("content")
def chat_send(chat_id: str, content: str) -> None:
    """Send a message to a chat."""
    try:
        with _client() as client:
            message = client.send_message(chat_id, content)
    except SwapHubError as e:
        _fail(e)
    click.echo(f"Sent (#{message.seq}).")


# === Live events ===


def describe_event(event: Event) -> str:
    """One-line human description of an event."""
    if isinstance(event, RequestCreated):
        return f"New swap request {event.request.id} from {event.request.sender_id}"
    if isinstance(event, RequestUpdated):
        return f"Swap request {event.request.id} is now {event.request.status.value}"
    if isinstance(event, RequestRemoved):
        return f"Swap request {event.request_id} removed"
    if isinstance(event, SwapAccepted):
        return f"Swap {event.request.id} accepted, chat {event.chat_id} opened"
    if isinstance(event, ChatMessage):
        return f"[{event.chat_id}] {event.message.sender_id}: {event.message.content}"
    if isinstance(event, ChatUpdate):
        return f"Chat {event.chat.id} updated"
    if isinstance(event, ChatDeleted):
        return f"Chat {event.chat_id} deleted by {event.deleted_by}"
    if isinstance(event, SwapNotification):
        return f"Notification: {event.message}"
    if isinstance(event, ErrorEvent):
        return f"Server error: {event.detail} ({event.code})"
    return event.event


@click.command()
@click.option("--chat", "chat_id", default=None, help="Join a chat and send stdin lines to it.")
@click.option("--verbose", "-v", is_flag=True, help="Show connection details.")
def listen(chat_id: str | None, verbose: bool) -> None:
    """Stream live swap and chat events.

    Runs until interrupted with Ctrl+C. With --chat, every line typed on
    stdin is sent as a message to that chat.
    """
    from swaphub.client.listener import EventListener
    from swaphub.client.reconciler import ClientReconciler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    server_config = require_server_config()
    client = SwapClient.from_config(server_config)
    reconciler = ClientReconciler()
    reconciler.add_callback(lambda event: click.echo(describe_event(event)))

    listener = EventListener(server_config, client, reconciler)
    if chat_id:
        listener.join_chat(chat_id)
    listener.start()
    click.echo("Listening for events (Ctrl+C to stop)...")

    try:
        if chat_id:
            for line in sys.stdin:
                text = line.strip()
                if text and not listener.send_message(chat_id, text):
                    click.echo("Not connected; message not sent.", err=True)
        else:
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        click.echo("\nStopping...")
        listener.stop()
        client.close()
