"""Server administration commands for SwapHub CLI.

Commands:
- server run: Start the API and event server
- server purge-tokens: Delete expired and revoked tokens
"""

from __future__ import annotations

import sys
from pathlib import Path

import click


@click.group()
def server() -> None:
    """Server management commands.

    These commands are for server administrators to run and maintain the
    SwapHub server.
    """


@server.command("run")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to bind.")
def run_cmd(host: str, port: int) -> None:
    """Start the server.

    Configuration comes from SWAPHUB_DB_PATH, SWAPHUB_LOG_PATH,
    SWAPHUB_TOKEN_TTL_DAYS and SWAPHUB_CLEANUP_HOUR.
    """
    import uvicorn

    uvicorn.run("swaphub.server.app:app_factory", factory=True, host=host, port=port)


@server.command("purge-tokens")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: SWAPHUB_DB_PATH or ./swaphub.db).",
)
def purge_tokens_cmd(db_path: str | None) -> None:
    """Delete expired and revoked tokens.

    The server does this daily on its own; this command can be run
    manually or via cron.

    Examples:

        # Purge using the default database
        swaphub server purge-tokens

        # Use custom database path
        swaphub server purge-tokens --db-path /var/lib/swaphub/swaphub.db
    """
    import os

    from swaphub.server.database import Database
    from swaphub.server.scheduler import purge_expired_tokens

    db_file = Path(db_path or os.environ.get("SWAPHUB_DB_PATH", "swaphub.db"))
    if not db_file.exists():
        click.echo(f"Error: Database not found: {db_file}", err=True)
        click.echo("Make sure the server has been run at least once.", err=True)
        sys.exit(1)

    click.echo(f"Database: {db_file}")
    db = Database(db_file)
    try:
        deleted = purge_expired_tokens(db)
        if deleted > 0:
            click.echo(f"Deleted {deleted} tokens.")
        else:
            click.echo("No tokens to purge.")
    finally:
        db.close()
