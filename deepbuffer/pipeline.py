"""pipeline.py – Wiring of the buffering pipeline

Builds the one store / poller / summarizer / sweeper set a process uses.  The
HTTP trigger and the in-process scheduler share this instance, so both end up
calling the same ``run_batch`` and ``sweep``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from slack_sdk import WebClient
from sqlalchemy.exc import SQLAlchemyError

from deepbuffer import logs as logging
from deepbuffer.batch import BatchSummarizer
from deepbuffer.config import Settings
from deepbuffer.database.store import ItemStore
from deepbuffer.helper_functions import create_db_engine
from deepbuffer.inputs.slack import SourcePoller
from deepbuffer.retention import RetentionSweeper
from deepbuffer.scheduler import Scheduler


@dataclass
class Pipeline:
    store: Optional[ItemStore]
    poller: SourcePoller
    batch: BatchSummarizer
    sweeper: RetentionSweeper
    client_factory: Callable[..., Any] = WebClient

    def scheduler(self, timezone: Optional[str] = None, **kwargs: Any) -> Scheduler:
        return Scheduler(self.batch, self.sweeper, timezone=timezone, **kwargs)


def assemble(
    store: Optional[ItemStore], *, client_factory: Callable[..., Any] = WebClient, **poller_kwargs: Any
) -> Pipeline:
    """Wire the components around *store* (which may be ``None``)."""
    poller = SourcePoller(store, client_factory=client_factory, **poller_kwargs)
    return Pipeline(
        store=store,
        poller=poller,
        batch=BatchSummarizer(store, poller=poller),
        sweeper=RetentionSweeper(store),
        client_factory=client_factory,
    )


def build_pipeline(settings: Settings) -> Pipeline:
    """Create the engine from *settings*, ensure the tables and wire everything.

    Without a usable database the components still get built around a
    ``None`` store and log an error on every run.
    """
    store: Optional[ItemStore] = None
    engine = create_db_engine(settings)
    if engine is not None:
        store = ItemStore.from_engine(engine)
        try:
            store.create_all()
        except SQLAlchemyError as exc:
            logging.log_text(f"Failed to create tables: {exc}", severity="ERROR")
            store = None
    return assemble(store)
