"""scheduler.py – In-process timer for long-running deployments

Registers the batch summarizer at 08:00, 13:00 and 19:00 and the retention
sweep at 04:00 on an APScheduler :class:`BackgroundScheduler`.  The process
entry point builds exactly one :class:`Scheduler` when the
``scheduler_enabled`` setting is on; serverless deployments skip it and rely
on the HTTP trigger, which calls the very same ``run_batch``/``sweep``
methods.

Overlapping runs (a slow batch still running when the external trigger
fires) are not prevented here; the per-user, pending-only design of the
batch makes them harmless.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from deepbuffer import logs as logging

__all__ = [
    "BATCH_HOURS",
    "RETENTION_HOUR",
    "Scheduler",
]

BATCH_HOURS = (8, 13, 19)
RETENTION_HOUR = 4
_MISFIRE_GRACE_TIME_S = 300


class Scheduler:
    """Owns the timer registrations and their lifecycle."""

    def __init__(self, batch, sweeper, *, timezone: Optional[str] = None, scheduler: Any = None):
        self._batch = batch
        self._sweeper = sweeper
        self._timezone = timezone
        self._scheduler = scheduler or BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "misfire_grace_time": _MISFIRE_GRACE_TIME_S,
            },
            **({"timezone": timezone} if timezone else {}),
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return

        for hour in BATCH_HOURS:
            self._scheduler.add_job(
                _guarded(self._batch.run_batch, "batch summarization"),
                CronTrigger(hour=hour, minute=0, timezone=self._timezone),
                id=f"batch-{hour:02d}00",
                name=f"Batch summarization {hour:02d}:00",
                replace_existing=True,
            )
        self._scheduler.add_job(
            _guarded(self._sweeper.sweep, "retention policy"),
            CronTrigger(hour=RETENTION_HOUR, minute=0, timezone=self._timezone),
            id=f"retention-{RETENTION_HOUR:02d}00",
            name=f"Retention policy {RETENTION_HOUR:02d}:00",
            replace_existing=True,
        )

        self._scheduler.start()
        self._running = True
        logging.log_text(
            "Scheduler initialized with times: "
            + ", ".join(f"{h:02d}:00" for h in BATCH_HOURS)
            + f" and daily cleanup at {RETENTION_HOUR:02d}:00",
            severity="INFO",
        )

    def stop(self) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False
        logging.log_text("Scheduler stopped.", severity="INFO")

    def job_ids(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]


def _guarded(fn: Callable[[], Any], label: str) -> Callable[[], Any]:
    """Wrap a job so an unexpected exception is logged instead of escaping."""

    def _run() -> Any:
        logging.log_text(f"[Cron] Running scheduled {label}.", severity="INFO")
        try:
            return fn()
        except Exception as exc:
            logging.log_text(f"[Cron] Scheduled {label} crashed: {exc}", severity="ERROR")
            return None

    _run.__name__ = f"run_{label.replace(' ', '_')}"
    return _run
