"""Scheduler for automatic maintenance tasks.

This module provides:
- Automatic daily purge of expired and revoked tokens
- A manual purge function for CLI usage
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from swaphub.server.database import Database

logger = logging.getLogger(__name__)


def purge_expired_tokens(db: Database) -> int:
    """Delete expired and revoked tokens.

    Args:
        db: Database instance.

    Returns:
        Number of tokens deleted.
    """
    deleted = db.cleanup_expired_tokens()
    if deleted > 0:
        logger.info("Token purge completed: %d tokens deleted", deleted)
    else:
        logger.debug("Token purge: nothing to delete")
    return deleted


class TokenPurgeScheduler:
    """Runs the token purge once a day."""

    def __init__(self, db: Database, hour: int = 3, minute: int = 0) -> None:
        """Initialize the scheduler.

        Args:
            db: Database instance.
            hour: Hour to run the purge job (0-23).
            minute: Minute to run the purge job (0-59).
        """
        self._db = db
        self._hour = hour
        self._minute = minute
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        """Whether the scheduler is started."""
        return self._scheduler is not None

    def _purge_job(self) -> None:
        """Job function for the scheduled purge."""
        logger.info("Starting scheduled token purge")
        try:
            purge_expired_tokens(self._db)
        except Exception:
            logger.exception("Error during scheduled token purge")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._purge_job,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            id="token_purge",
            name="Daily token purge",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Token purge scheduler started (daily at %02d:%02d)", self._hour, self._minute
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Token purge scheduler stopped")

    def run_now(self) -> int:
        """Run the purge immediately (manual trigger)."""
        return purge_expired_tokens(self._db)
