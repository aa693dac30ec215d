"""database.store
==================

:class:`ItemStore` is the single gateway between the pipeline and the
relational store.  Each public method runs in its own short transaction and
relies on the database's per-statement atomicity; there is no cross-method
locking.  Methods raise :class:`sqlalchemy.exc.SQLAlchemyError` on failure and
leave the decision to skip or abort to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from deepbuffer.database.models import (
    STATUS_ARCHIVED,
    STATUS_DONE,
    STATUS_PENDING,
    STATUS_SUMMARIZED,
    SOURCE_WEB,
    Base,
    Item,
    Summary,
    UserSettings,
    Workspace,
)

__all__ = [
    "ItemStore",
    "PendingItem",
    "WorkspaceCredential",
]

# Statuses the retention sweep may delete.  ``pending`` is deliberately absent.
PROCESSED_STATUSES = (STATUS_ARCHIVED, STATUS_DONE, STATUS_SUMMARIZED)


@dataclass(frozen=True)
class WorkspaceCredential:
    team_id: str
    access_token: str
    user_id: str
    team_name: Optional[str] = None

    def __repr__(self) -> str:
        return f"WorkspaceCredential(team_id={self.team_id!r}, user_id={self.user_id!r})"


@dataclass(frozen=True)
class PendingItem:
    id: str
    content: str
    created_at: datetime


class ItemStore:
    """Query layer over the ``workspaces``/``items``/``summaries``/``user_settings`` tables."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: Engine) -> "ItemStore":
        return cls(sessionmaker(bind=engine, expire_on_commit=False))

    def create_all(self) -> None:
        """Create missing tables (idempotent)."""
        Base.metadata.create_all(self._session_factory.kw["bind"])

    def _begin(self):
        return self._session_factory.begin()

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def list_polling_workspaces(self) -> List[WorkspaceCredential]:
        """Return every workspace that carries a usable access token."""
        stmt = select(
            Workspace.team_id, Workspace.access_token, Workspace.user_id, Workspace.team_name
        ).order_by(Workspace.created_at)
        with self._begin() as session:
            rows = session.execute(stmt).all()
        return [
            WorkspaceCredential(team_id=r.team_id, access_token=r.access_token, user_id=r.user_id, team_name=r.team_name)
            for r in rows
            if r.access_token
        ]

    def workspaces_for_user(self, user_id: str) -> List[WorkspaceCredential]:
        return [ws for ws in self.list_polling_workspaces() if ws.user_id == user_id]

    def get_workspace(self, team_id: str) -> Optional[WorkspaceCredential]:
        stmt = select(
            Workspace.team_id, Workspace.access_token, Workspace.user_id, Workspace.team_name
        ).where(Workspace.team_id == team_id)
        with self._begin() as session:
            row = session.execute(stmt).first()
        if row is None:
            return None
        return WorkspaceCredential(
            team_id=row.team_id, access_token=row.access_token, user_id=row.user_id, team_name=row.team_name
        )

    def get_workspace_token(self, team_id: str) -> Optional[str]:
        stmt = select(Workspace.access_token).where(Workspace.team_id == team_id)
        with self._begin() as session:
            return session.execute(stmt).scalar_one_or_none()

    def upsert_workspace(
        self,
        *,
        team_id: str,
        access_token: str,
        user_id: str,
        team_name: Optional[str] = None,
        icon_url: Optional[str] = None,
    ) -> None:
        """Insert or update the workspace row keyed on ``team_id``."""
        with self._begin() as session:
            workspace = session.execute(
                select(Workspace).where(Workspace.team_id == team_id)
            ).scalar_one_or_none()
            if workspace is None:
                workspace = Workspace(team_id=team_id)
                session.add(workspace)
            workspace.access_token = access_token
            workspace.user_id = user_id
            workspace.team_name = team_name
            workspace.icon_url = icon_url or ""

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def item_exists(self, *, team_id: str, channel: str, ts: str) -> bool:
        """Dedup check on the (channel, ts) pair within one workspace."""
        stmt = (
            select(Item.id)
            .where(Item.meta_data["channel"].as_string() == channel)
            .where(Item.meta_data["ts"].as_string() == ts)
            .where(Item.meta_data["team"].as_string() == team_id)
            .limit(1)
        )
        with self._begin() as session:
            return session.execute(stmt).first() is not None

    def insert_item(
        self,
        *,
        source_type: str,
        content: str,
        meta_data: Dict[str, Any],
        user_id: str,
        status: str = STATUS_PENDING,
        created_at: Optional[datetime] = None,
    ) -> str:
        item = Item(
            source_type=source_type,
            content=content,
            meta_data=dict(meta_data),
            status=status,
            user_id=user_id,
        )
        if created_at is not None:
            item.created_at = created_at
        with self._begin() as session:
            session.add(item)
            session.flush()
            return item.id

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._begin() as session:
            return session.get(Item, item_id)

    def list_items(self, user_id: str) -> List[Item]:
        stmt = select(Item).where(Item.user_id == user_id).order_by(Item.created_at)
        with self._begin() as session:
            return list(session.execute(stmt).scalars())

    def list_recent_items(self, user_id: str, status: Optional[str] = None, limit: int = 50) -> List[Item]:
        """Newest-first items of *user_id*; archived ones only when asked for."""
        stmt = select(Item).where(Item.user_id == user_id)
        if status:
            stmt = stmt.where(Item.status == status)
        else:
            stmt = stmt.where(Item.status != STATUS_ARCHIVED)
        stmt = stmt.order_by(Item.created_at.desc()).limit(limit)
        with self._begin() as session:
            return list(session.execute(stmt).scalars())

    def pending_user_ids(self) -> List[str]:
        stmt = (
            select(Item.user_id)
            .where(Item.status == STATUS_PENDING)
            .distinct()
            .order_by(Item.user_id)
        )
        with self._begin() as session:
            return list(session.execute(stmt).scalars())

    def fetch_pending_items(self, user_id: str, limit: int) -> List[PendingItem]:
        """Oldest-first pending items owned by *user_id*, at most *limit*."""
        stmt = (
            select(Item.id, Item.content, Item.created_at)
            .where(Item.status == STATUS_PENDING)
            .where(Item.user_id == user_id)
            .order_by(Item.created_at, Item.id)
            .limit(limit)
        )
        with self._begin() as session:
            rows = session.execute(stmt).all()
        return [PendingItem(id=r.id, content=r.content, created_at=r.created_at) for r in rows]

    def count_pending(self, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Item)
            .where(Item.status == STATUS_PENDING)
            .where(Item.user_id == user_id)
        )
        with self._begin() as session:
            return int(session.execute(stmt).scalar_one())

    def mark_summarized(self, user_id: str, item_ids: Sequence[str]) -> int:
        """Move still-pending items to ``summarized``; returns rows changed.

        Items that already left ``pending`` are untouched, so status never
        moves backwards and re-running the update is a no-op.
        """
        if not item_ids:
            return 0
        stmt = (
            update(Item)
            .where(Item.id.in_(list(item_ids)))
            .where(Item.user_id == user_id)
            .where(Item.status == STATUS_PENDING)
            .values(status=STATUS_SUMMARIZED)
            .execution_options(synchronize_session=False)
        )
        with self._begin() as session:
            return session.execute(stmt).rowcount

    def delete_expired(self, threshold: datetime) -> int:
        """Delete processed, non-link items created before *threshold*."""
        stmt = (
            delete(Item)
            .where(Item.created_at < threshold)
            .where(Item.status.in_(PROCESSED_STATUSES))
            .where(Item.source_type != SOURCE_WEB)
            .execution_options(synchronize_session=False)
        )
        with self._begin() as session:
            return session.execute(stmt).rowcount

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def insert_summary(self, *, user_id: str, summary_text: str, item_ids: Sequence[str]) -> str:
        summary = Summary(summary_text=summary_text, target_items=list(item_ids), user_id=user_id)
        with self._begin() as session:
            session.add(summary)
            session.flush()
            return summary.id

    def latest_summary(self, user_id: str) -> Optional[Summary]:
        stmt = (
            select(Summary)
            .where(Summary.user_id == user_id)
            .order_by(Summary.created_at.desc())
            .limit(1)
        )
        with self._begin() as session:
            return session.execute(stmt).scalar_one_or_none()

    def list_summaries(self, user_id: str) -> List[Summary]:
        stmt = select(Summary).where(Summary.user_id == user_id).order_by(Summary.created_at)
        with self._begin() as session:
            return list(session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # User settings
    # ------------------------------------------------------------------

    def get_user_settings(self, user_id: str) -> Optional[UserSettings]:
        stmt = select(UserSettings).where(UserSettings.user_id == user_id)
        with self._begin() as session:
            return session.execute(stmt).scalar_one_or_none()

    def get_custom_instructions(self, user_id: str) -> Optional[str]:
        stmt = select(UserSettings.report_custom_instructions).where(UserSettings.user_id == user_id)
        with self._begin() as session:
            value = session.execute(stmt).scalar_one_or_none()
        return value or None

    def upsert_user_settings(
        self,
        user_id: str,
        *,
        alert_keywords: Optional[List[str]] = None,
        vip_user_ids: Optional[List[str]] = None,
        report_custom_instructions: Optional[str] = None,
    ) -> UserSettings:
        with self._begin() as session:
            settings = session.execute(
                select(UserSettings).where(UserSettings.user_id == user_id)
            ).scalar_one_or_none()
            if settings is None:
                settings = UserSettings(user_id=user_id)
                session.add(settings)
            settings.alert_keywords = list(alert_keywords or [])
            settings.vip_user_ids = list(vip_user_ids or [])
            settings.report_custom_instructions = report_custom_instructions
            session.flush()
            return settings

