"""Command-line interface for SwapHub.

This module provides the main CLI entry point and assembles all commands.

Commands:
- register: Create an account and sign in
- login: Sign in to a server
- whoami: Show the signed-in user
- items: Post and list items
- swap: Create, list, accept, reject and remove swap requests
- chat: List, show and send chat messages
- listen: Stream live events
- server: Server administration commands
"""

from __future__ import annotations

import click

from swaphub.client.cli.account import items, login, register, whoami
from swaphub.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from swaphub.client.cli.server import server
from swaphub.client.cli.swaps import chat, listen, swap


@click.group()
@click.version_option(package_name="swaphub")
def cli() -> None:
    """SwapHub - Item swaps with real-time chat."""


# Account commands
cli.add_command(register)
cli.add_command(login)
cli.add_command(whoami)
cli.add_command(items)

# Swap and chat commands
cli.add_command(swap)
cli.add_command(chat)
cli.add_command(listen)

# Server admin commands
cli.add_command(server)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
