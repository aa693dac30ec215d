"""database.models
===================

SQLAlchemy declarative models for the DeepBuffer persistence layer.

Tables
------
1. workspaces – Connected Slack workspaces and their access tokens.
2. items – Every ingested unit of content: Slack messages and saved links.
3. summaries – Digest reports produced by the batch summarizer.
4. user_settings – Per-user alert keywords, VIPs and report instructions.

Free-form attributes live in JSON columns, which become ``JSONB`` on
Postgres.  Every table carries the owning ``user_id``; the pipeline never
reads or writes across that boundary.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")

SOURCE_SLACK = "slack"
SOURCE_WEB = "web"
SOURCE_TYPES = (SOURCE_SLACK, SOURCE_WEB)

STATUS_PENDING = "pending"
STATUS_SUMMARIZED = "summarized"
STATUS_DONE = "done"
STATUS_ARCHIVED = "archived"
STATUSES = (STATUS_PENDING, STATUS_SUMMARIZED, STATUS_DONE, STATUS_ARCHIVED)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Workspace(Base, TimestampMixin):
    __tablename__ = "workspaces"

    id = Column(String(36), primary_key=True, default=_new_id)
    team_id = Column(String, nullable=False, unique=True)
    access_token = Column(Text, nullable=False)
    team_name = Column(String)
    icon_url = Column(String)
    user_id = Column(String(36), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:  # never leak the token
        return f"<Workspace team_id={self.team_id!r} user_id={self.user_id!r}>"


class Item(Base, TimestampMixin):
    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=_new_id)
    source_type = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    meta_data = Column(JSONType, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=STATUS_PENDING)
    user_id = Column(String(36), nullable=False)

    __table_args__ = (
        Index("idx_items_status", "status"),
        Index("idx_items_user_status", "user_id", "status"),
    )


class Summary(Base, TimestampMixin):
    __tablename__ = "summaries"

    id = Column(String(36), primary_key=True, default=_new_id)
    summary_text = Column(Text, nullable=False)
    target_items = Column(JSONType, nullable=False, default=list)
    user_id = Column(String(36), nullable=False, index=True)


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, unique=True)
    alert_keywords = Column(JSONType, nullable=False, default=list)
    vip_user_ids = Column(JSONType, nullable=False, default=list)
    report_custom_instructions = Column(Text)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
