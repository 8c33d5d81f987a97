"""FastAPI application for SwapHub server.

This module creates and configures the FastAPI application with:
- REST API for users, items, swap requests and chats
- WebSocket event stream (/ws)
- Startup recovery of interrupted accepts and the token purge scheduler

Usage:
    uvicorn swaphub.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI

from swaphub import __version__
from swaphub.server.api.router import router as api_router
from swaphub.server.chats import ChatStore
from swaphub.server.database import Database
from swaphub.server.ledger import SwapLedger
from swaphub.server.scheduler import TokenPurgeScheduler
from swaphub.server.ws import EventBus
from swaphub.server.ws import router as ws_router

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("SWAPHUB_DB_PATH", "swaphub.db"))
LOG_PATH = Path(os.environ.get("SWAPHUB_LOG_PATH", "swaphub-server.log"))
TOKEN_TTL_DAYS = int(os.environ.get("SWAPHUB_TOKEN_TTL_DAYS", "7"))
CLEANUP_HOUR = int(os.environ.get("SWAPHUB_CLEANUP_HOUR", "3"))

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for swaphub
    root_logger = logging.getLogger("swaphub")
    root_logger.setLevel(logging.INFO)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(uvicorn_name).addHandler(file_handler)


def create_app(
    db: Database,
    token_ttl: timedelta | None = None,
    enable_scheduler: bool = False,
    cleanup_hour: int = CLEANUP_HOUR,
) -> FastAPI:
    """Create FastAPI application around a database.

    Tests pass an isolated database and keep the scheduler off.

    Args:
        db: Database instance.
        token_ttl: Lifetime of issued tokens (None for no expiry).
        enable_scheduler: Start the daily token purge.
        cleanup_hour: Hour of the daily token purge.

    Returns:
        Configured FastAPI application.
    """
    bus = EventBus()
    chats = ChatStore(db, bus)
    ledger = SwapLedger(db, chats, bus)
    scheduler = TokenPurgeScheduler(db, hour=cleanup_hour) if enable_scheduler else None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info("=" * 60)
        logger.info("SwapHub Server Starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db.path)
        logger.info("  Token TTL: %s", token_ttl or "none")
        logger.info("=" * 60)

        repaired = await ledger.resume_incomplete()
        if repaired:
            logger.warning("Repaired %d interrupted swap accepts", repaired)

        if scheduler is not None:
            scheduler.start()

        yield

        await bus.close()
        if scheduler is not None:
            scheduler.stop()
        logger.info("SwapHub Server shutting down")

    application = FastAPI(
        title="SwapHub Server",
        description="Item swap negotiation with real-time chat",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.bus = bus
    application.state.chats = chats
    application.state.ledger = ledger
    application.state.token_ttl = token_ttl

    application.include_router(api_router)
    application.include_router(ws_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(LOG_PATH)
    return create_app(
        db=Database(DB_PATH),
        token_ttl=timedelta(days=TOKEN_TTL_DAYS) if TOKEN_TTL_DAYS > 0 else None,
        enable_scheduler=True,
    )
