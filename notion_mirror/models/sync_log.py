"""Sync log model for tracking sync operations."""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON

from notion_mirror.core.database import Base


class SyncLog(Base):
    """Log of sync runs."""

    __tablename__ = "sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    database_id = Column(String, nullable=False, index=True)
    table_name = Column(String, nullable=False)
    sync_type = Column(String, nullable=False)  # "full", "incremental", "dry_run", "initialize"
    started_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False)  # "success", "failed"
    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
