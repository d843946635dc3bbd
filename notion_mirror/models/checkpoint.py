"""Checkpoint model for incremental sync state."""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime

from notion_mirror.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncCheckpoint(Base):
    """Last successful sync time per Notion database."""

    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True, autoincrement=True)
    database_id = Column(String, nullable=False, unique=True, index=True)
    last_sync_time = Column(DateTime(timezone=True), nullable=False)
    processed_count = Column(Integer, nullable=False, default=0)
    sync_type = Column(String, nullable=True)  # "full", "incremental"
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
