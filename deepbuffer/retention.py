"""retention.py – Daily cleanup of processed items

Deletes items older than :data:`RETENTION_PERIOD` once they are processed
(``summarized``, ``done`` or ``archived``).  Saved links (``web`` items) and
``pending`` items are never deleted, whatever their age.  The sweep is a
global maintenance pass and is not scoped to a user.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from deepbuffer import logs as logging

RETENTION_PERIOD = timedelta(days=7)


class RetentionSweeper:
    def __init__(
        self,
        store,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        retention: timedelta = RETENTION_PERIOD,
    ):
        self._store = store
        self._clock = clock
        self._retention = retention

    def sweep(self) -> Optional[int]:
        """Delete expired rows and return how many went, or ``None`` on failure."""
        if self._store is None:
            logging.log_text("DB not configured for retention policy.", severity="ERROR")
            return None

        logging.log_text("[Scheduler] Running retention policy...", severity="INFO")
        threshold = self._clock() - self._retention
        try:
            count = self._store.delete_expired(threshold)
        except SQLAlchemyError as exc:
            logging.log_text(f"[Scheduler] Retention error: {exc}", severity="ERROR")
            return None

        logging.log_text(f"[Scheduler] Deleted {count} old items.", severity="INFO")
        return count
