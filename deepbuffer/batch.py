"""batch.py – Per-user batch summarization

One run of :pyfunc:`BatchSummarizer.run_batch` polls Slack, then turns each
user's oldest pending items into a digest:

    pending items (≤ BATCH_SIZE) ──▶ verbs.summarize ──▶ summaries row
                                                     └─▶ items → summarized

Users are processed one after the other and independently; a failure for one
user is logged and the run moves on.  Items beyond :data:`BATCH_SIZE` stay
``pending`` for the next scheduled run.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from deepbuffer import logs as logging
from deepbuffer import verbs

__all__ = [
    "BATCH_SIZE",
    "BatchSummarizer",
]

BATCH_SIZE = 50

Summarize = Callable[[Sequence[str], Optional[str]], Optional[verbs.DigestResult]]


class BatchSummarizer:
    def __init__(self, store, poller=None, summarize: Summarize = verbs.summarize, batch_size: int = BATCH_SIZE):
        self._store = store
        self._poller = poller
        self._summarize = summarize
        self._batch_size = batch_size

    def run_batch(self) -> Optional[Dict[str, Any]]:
        """Poll, then summarize every user's pending backlog.

        Returns
        -------
        dict | None
            ``{"success": True, "total_users_processed": n, "details": [...]}``
            where each detail is ``{"user_id", "processed", "summary"}``;
            ``None`` when the store is missing or the pending-user lookup
            fails.
        """
        if self._store is None:
            logging.log_text("DB not configured for summarization.", severity="ERROR")
            return None

        if self._poller is not None:
            logging.log_text("[Scheduler] Starting Slack polling...", severity="INFO")
            self._poller.poll()

        try:
            user_ids = self._store.pending_user_ids()
        except SQLAlchemyError as exc:
            logging.log_text(f"[Scheduler] Fetch users error: {exc}", severity="ERROR")
            return None

        if not user_ids:
            logging.log_text("[Scheduler] No pending items to summarize for any user.", severity="INFO")
            return _report([])

        logging.log_text(f"[Scheduler] Found {len(user_ids)} users with pending items.", severity="INFO")

        details: List[Dict[str, Any]] = []
        for user_id in user_ids:
            result = self._summarize_user(user_id)
            if result is not None:
                details.append(result)

        return _report(details)

    def _summarize_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        logging.log_text(f"[Scheduler] Processing summary for user {user_id}...", severity="INFO")

        try:
            items = self._store.fetch_pending_items(user_id, limit=self._batch_size)
        except SQLAlchemyError as exc:
            logging.log_text(f"[Scheduler] Fetch items error for user {user_id}: {exc}", severity="WARNING")
            return None
        if not items:
            logging.log_text(f"[Scheduler] No pending items left for user {user_id}.", severity="WARNING")
            return None

        try:
            custom_instructions = self._store.get_custom_instructions(user_id)
        except SQLAlchemyError as exc:
            # Instructions are optional; summarize with the fixed rules only.
            logging.log_text(f"[Scheduler] Settings lookup failed for user {user_id}: {exc}", severity="WARNING")
            custom_instructions = None

        result = self._summarize([item.content for item in items], custom_instructions)
        if result is None:
            logging.log_text(f"[Scheduler] AI summarization failed for user {user_id}.", severity="ERROR")
            return None

        item_ids = [item.id for item in items]
        try:
            self._store.insert_summary(user_id=user_id, summary_text=result.summary_text, item_ids=item_ids)
        except SQLAlchemyError as exc:
            logging.log_text(f"[Scheduler] Save summary error for user {user_id}: {exc}", severity="ERROR")
            return None

        # The summary stays even if this update fails; the items are simply
        # picked up again by a later run.
        try:
            self._store.mark_summarized(user_id, item_ids)
        except SQLAlchemyError as exc:
            logging.log_text(f"[Scheduler] Update status error for user {user_id}: {exc}", severity="ERROR")

        return {
            "user_id": user_id,
            "processed": len(items),
            "summary": result.summary_text,
        }


def _report(details: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "success": True,
        "total_users_processed": len(details),
        "details": details,
    }
