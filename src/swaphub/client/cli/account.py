"""Account and item commands for SwapHub CLI.

Commands:
- register: Create an account on a server and sign in
- login: Sign in to a server
- whoami: Show the signed-in user
- items add: Post an item
- items list: List items
"""

from __future__ import annotations

import sys

import click
import httpx

from swaphub.client.api import SwapClient
from swaphub.client.cli.config import load_config, require_server_config, save_config
from swaphub.core.errors import AuthenticationError, SwapHubError


def _sign_in(server: str, username: str, password: str, create: bool) -> None:
    """Register or log in, then store the token."""
    server = server.rstrip("/")
    action = "Registering" if create else "Signing in"
    click.echo(f"{action} as '{username}' on {server}...")

    try:
        with SwapClient(server) as client:
            if create:
                data = client.register(username, password)
            else:
                data = client.login(username, password)
    except httpx.ConnectError:
        click.echo(f"Error: Could not connect to server at {server}", err=True)
        click.echo("Make sure the server is running and accessible.")
        sys.exit(1)
    except AuthenticationError:
        click.echo("Error: Invalid username or password.", err=True)
        sys.exit(1)
    except SwapHubError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    config = load_config()
    config["server_url"] = server
    config["auth_token"] = data["token"]
    config["user_id"] = data["user"]["id"]
    config["username"] = data["user"]["username"]
    save_config(config)

    click.echo(f"Signed in as {data['user']['username']} (id={data['user']['id']})")


@click.command()
@click.option("--server", required=True, help="Server URL (e.g., http://localhost:8000).")
@click.option("--username", prompt=True, help="Account name.")
@click.password_option(help="Account password.")
def register(server: str, username: str, password: str) -> None:
    """Create an account on a SwapHub server and sign in."""
    _sign_in(server, username, password, create=True)


@click.command()
@click.option("--server", default=None, help="Server URL (default: last used server).")
@click.option("--username", prompt=True, help="Account name.")
@click.option("--password", prompt=True, hide_input=True, help="Account password.")
def login(server: str | None, username: str, password: str) -> None:
    """Sign in to a SwapHub server."""
    server = server or load_config().get("server_url")
    if not server:
        click.echo("Error: No server known yet. Pass --server.", err=True)
        sys.exit(1)
    _sign_in(server, username, password, create=False)


@click.command()
def whoami() -> None:
    """Show the signed-in user."""
    server_config = require_server_config()
    try:
        with SwapClient.from_config(server_config) as client:
            user = client.me()
    except SwapHubError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    click.echo(f"{user['username']} (id={user['id']}) on {server_config.server_url}")


@click.group()
def items() -> None:
    """Item commands."""


@items.command("add")
@click.argument("title")
def items_add(title: str) -> None:
    """Post an item available for swapping."""
    server_config = require_server_config()
    try:
        with SwapClient.from_config(server_config) as client:
            item = client.create_item(title)
    except SwapHubError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    click.echo(f"Item posted: {item.id}  {item.title}")


@items.command("list")
@click.option("--mine", is_flag=True, help="Only list your own items.")
def items_list(mine: bool) -> None:
    """List items."""
    server_config = require_server_config()
    try:
        with SwapClient.from_config(server_config) as client:
            found = client.list_items("me" if mine else None)
    except SwapHubError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if not found:
        click.echo("No items.")
        return
    for item in found:
        state = "available" if item.available else "swapped"
        click.echo(f"{item.id}  {item.title:<30}  {state:<9}  owner={item.owner_id}")
