"""Persistence of the last successful sync time per Notion database."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notion_mirror.models.checkpoint import SyncCheckpoint

logger = logging.getLogger(__name__)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class CheckpointStore:
    """Reads and writes rows of the sync_state table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_checkpoint(self, database_id: str) -> Optional[SyncCheckpoint]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(SyncCheckpoint).where(SyncCheckpoint.database_id == database_id)
            )
            return result.scalar_one_or_none()

    async def get_last_sync_time(self, database_id: str) -> Optional[datetime]:
        """Last successful sync start time, or None before the first successful run."""
        checkpoint = await self.get_checkpoint(database_id)
        if checkpoint is None:
            return None
        return _as_utc(checkpoint.last_sync_time)

    async def update_last_sync_time(
        self,
        database_id: str,
        sync_time: datetime,
        processed_count: int = 0,
        sync_type: str = "incremental",
    ) -> None:
        """Upsert the checkpoint row for `database_id`."""
        now = datetime.now(timezone.utc)
        values = {
            "database_id": database_id,
            "last_sync_time": _as_utc(sync_time),
            "processed_count": processed_count,
            "sync_type": sync_type,
            "created_at": now,
            "updated_at": now,
        }

        async with self.session_maker() as session:
            dialect = session.bind.dialect.name
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(SyncCheckpoint).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["database_id"],
                set_={
                    "last_sync_time": stmt.excluded.last_sync_time,
                    "processed_count": stmt.excluded.processed_count,
                    "sync_type": stmt.excluded.sync_type,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()

        logger.info(f"Sync state updated for {database_id}: last_sync_time={sync_time.isoformat()}")

    async def cleanup_old_records(self, days_to_keep: int = 30) -> int:
        """Delete checkpoints not updated within `days_to_keep` days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        async with self.session_maker() as session:
            result = await session.execute(
                delete(SyncCheckpoint).where(SyncCheckpoint.updated_at < cutoff)
            )
            await session.commit()
        deleted = result.rowcount or 0
        logger.info(f"Removed {deleted} sync state records older than {cutoff.isoformat()}")
        return deleted
