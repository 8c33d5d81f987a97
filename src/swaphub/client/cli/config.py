"""Configuration utilities for SwapHub CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from swaphub.core.config import ServerConfig


def get_config_dir() -> Path:
    """Get the configuration directory for SwapHub.

    Returns:
        Path to ~/.swaphub or equivalent.
    """
    return Path.home() / ".swaphub"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def require_server_config() -> ServerConfig:
    """Build a ServerConfig from the saved login, or exit.

    Returns:
        ServerConfig with the stored server URL and token.
    """
    config = load_config()
    if not config.get("server_url") or not config.get("auth_token"):
        click.echo("Error: Not signed in. Run 'swaphub login' first.", err=True)
        sys.exit(1)
    return ServerConfig(server_url=config["server_url"], token=config["auth_token"])
