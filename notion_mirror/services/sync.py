"""Sync orchestration - one incremental run from Notion into the destination table."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from notion_mirror.core.config import SyncConfig
from notion_mirror.core.database import make_session_maker
from notion_mirror.core.exceptions import ConfigurationError, NotionMirrorError, SyncError
from notion_mirror.models.sync_log import SyncLog
from notion_mirror.schemas.notion import Record
from notion_mirror.schemas.responses import SyncResult, SyncStats, SyncStatsResponse
from notion_mirror.services.checkpoint import CheckpointStore
from notion_mirror.services.destination import DestinationClient
from notion_mirror.services.notion import NotionClient
from notion_mirror.services.retry import RetryPolicy
from notion_mirror.services.transformer import transform_record, validate_row

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


class SyncService:
    """Composes the Notion client, destination and checkpoint store into sync runs."""

    def __init__(
        self,
        config: SyncConfig,
        notion: NotionClient,
        destination: DestinationClient,
        checkpoints: CheckpointStore,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.config = config
        self.notion = notion
        self.destination = destination
        self.checkpoints = checkpoints
        self.session_maker = session_maker

    async def initialize(self) -> None:
        """Check credentials and make sure the mirror table exists."""
        logger.info(f"Initializing sync for database {self.config.notion_database_id} -> {self.config.table_name}")
        started_at = datetime.now(timezone.utc)
        try:
            if not await self.notion.validate_token():
                raise ConfigurationError("Invalid Notion token")
            await self.destination.ensure_table_exists(self.config.table_name)
        except NotionMirrorError as e:
            await self._record_run(started_at, "initialize", "failed", error=str(e))
            raise

    async def close(self) -> None:
        await self.notion.close()

    def transform_records(self, records: list[Record]) -> tuple[list[dict[str, Any]], list[dict]]:
        """Transform records into rows. Bad records are dropped and reported, never raised."""
        rows = []
        errors = []
        for record in records:
            try:
                row = transform_record(record)
            except Exception as e:
                logger.error(f"Error transforming record {record.id}: {e}")
                errors.append({"record_id": record.id, "error": str(e)})
                continue
            if validate_row(row):
                rows.append(row)
            else:
                errors.append({"record_id": record.id, "error": "Invalid transformed data"})

        if errors:
            logger.warning(
                f"Record transformation errors: {len(rows)}/{len(records)} succeeded, "
                f"first errors: {errors[:5]}"
            )
        return rows, errors

    def _build_result(
        self,
        start_time: datetime,
        sync_type: str,
        fetched: int,
        transformed: int,
        synced: int,
        transform_errors: int,
        schema_changes: Optional[dict],
    ) -> SyncResult:
        end_time = datetime.now(timezone.utc)
        duration_ms = int((end_time - start_time).total_seconds() * 1000)
        return SyncResult(
            success=True,
            start_time=start_time,
            end_time=end_time,
            duration=duration_ms,
            duration_seconds=round(duration_ms / 1000),
            sync_type=sync_type,
            stats=SyncStats(
                total_fetched=fetched,
                total_transformed=transformed,
                total_synced=synced,
                transformation_rate=_rate(transformed, fetched),
                sync_rate=_rate(synced, transformed),
                transform_errors=transform_errors,
            ),
            schema_changes=schema_changes,
            config={
                "database_id": self.config.notion_database_id,
                "table_name": self.config.table_name,
                "batch_size": self.config.batch_size,
            },
        )

    async def sync(
        self,
        force_full_sync: bool = False,
        dry_run: bool = False,
        max_records: Optional[int] = None,
    ) -> SyncResult:
        """
        Run one sync.

        The checkpoint only moves after a successful, non-dry run, and is always
        stamped with the run's start time. Any error in schema fetch, column
        reconciliation, record fetch or upsert aborts the run and leaves the
        checkpoint where it was.
        """
        if max_records is not None and max_records < 1:
            raise ConfigurationError(f"max_records must be at least 1, got {max_records}")

        start_time = datetime.now(timezone.utc)
        database_id = self.config.notion_database_id
        table = self.config.table_name
        logger.info(
            f"Starting sync {database_id} -> {table} "
            f"(force_full_sync={force_full_sync}, dry_run={dry_run}, max_records={max_records})"
        )

        sync_type = "dry_run" if dry_run else ("full" if force_full_sync else "incremental")
        try:
            result = await self._run(start_time, force_full_sync, dry_run, max_records)
        except Exception as e:
            logger.error(f"Sync failed for {database_id}: {e}")
            await self._record_run(start_time, sync_type, "failed", error=str(e))
            if isinstance(e, NotionMirrorError):
                raise
            raise SyncError(f"Sync failed: {e}", cause=e) from e

        await self._record_run(start_time, result.sync_type, "success", details=result.model_dump(mode="json"))
        logger.info(f"Sync completed: {result.stats.model_dump()}")
        return result

    async def _run(
        self,
        start_time: datetime,
        force_full_sync: bool,
        dry_run: bool,
        max_records: Optional[int],
    ) -> SyncResult:
        database_id = self.config.notion_database_id
        table = self.config.table_name

        # 1. Schema
        schema = await self.notion.get_schema(database_id)

        # 2. Columns
        schema_changes = None
        if not dry_run:
            column_result = await self.destination.create_missing_columns(table, schema)
            schema_changes = column_result.to_dict()
            logger.info(
                f"Schema synchronization for {table}: created={column_result.created}, "
                f"existing={column_result.existing}, missing={column_result.missing}, "
                f"errors={len(column_result.errors)}"
            )

        # 3. Checkpoint
        last_sync_time = None
        if not force_full_sync:
            last_sync_time = await self.checkpoints.get_last_sync_time(database_id)
            if last_sync_time:
                logger.info(f"Incremental sync since {last_sync_time.isoformat()}")
            else:
                logger.info("Full sync required - no previous sync found")
        sync_type = "incremental" if last_sync_time else "full"
        if dry_run:
            sync_type = "dry_run"

        # 4. Fetch
        records = await self.notion.get_all_records(
            database_id,
            page_size=self.config.batch_size,
            since=last_sync_time,
            max_records=max_records,
        )
        if max_records is not None and len(records) > max_records:
            logger.warning(
                f"Fetched {len(records)} records, keeping the first {max_records}; "
                f"the rest are not picked up again until a full sync"
            )
            records = records[:max_records]

        # 5. Transform
        rows, transform_errors = self.transform_records(records)

        # 6. Dry run reports what would have been written
        if dry_run:
            logger.info(f"Dry run - skipping database writes for {len(rows)} rows")
            return self._build_result(
                start_time, sync_type, len(records), len(rows), len(rows),
                len(transform_errors), schema_changes,
            )

        # 7. Upsert, then checkpoint
        synced = 0
        if rows:
            upsert_result = await self.destination.upsert_rows(table, rows, conflict_key="notion_id")
            synced = upsert_result.inserted + upsert_result.updated
        else:
            logger.info("No rows to upsert")

        await self.checkpoints.update_last_sync_time(
            database_id, start_time, processed_count=synced, sync_type=sync_type,
        )

        return self._build_result(
            start_time, sync_type, len(records), len(rows), synced,
            len(transform_errors), schema_changes,
        )

    async def _record_run(
        self,
        started_at: datetime,
        sync_type: str,
        status: str,
        details: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> None:
        """Write a sync_log row. Failing to log never changes the run's outcome."""
        if self.session_maker is None:
            return
        try:
            async with self.session_maker() as session:
                session.add(SyncLog(
                    database_id=self.config.notion_database_id,
                    table_name=self.config.table_name,
                    sync_type=sync_type,
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                    status=status,
                    details=details,
                    error_message=error,
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to write sync log: {e}")

    async def get_sync_stats(self) -> SyncStatsResponse:
        """Checkpoint details plus the current row count of the mirror table."""
        checkpoint = await self.checkpoints.get_checkpoint(self.config.notion_database_id)
        try:
            row_count = await self.destination.count_rows(self.config.table_name)
        except Exception as e:
            logger.warning(f"Could not count rows in {self.config.table_name}: {e}")
            row_count = None

        return SyncStatsResponse(
            database_id=self.config.notion_database_id,
            table_name=self.config.table_name,
            last_sync_time=checkpoint.last_sync_time if checkpoint else None,
            processed_count=checkpoint.processed_count if checkpoint else None,
            sync_type=checkpoint.sync_type if checkpoint else None,
            created_at=checkpoint.created_at if checkpoint else None,
            updated_at=checkpoint.updated_at if checkpoint else None,
            table_row_count=row_count,
        )

    async def cleanup(self, days_to_keep: int = 30) -> int:
        return await self.checkpoints.cleanup_old_records(days_to_keep)


def build_sync_service(config: SyncConfig, engine: AsyncEngine) -> SyncService:
    """Wire up a SyncService from config and a destination engine."""
    policy = RetryPolicy.from_config(config.max_retries, config.retry_delay_ms)
    session_maker = make_session_maker(engine)
    return SyncService(
        config=config,
        notion=NotionClient(
            config.notion_token,
            policy=policy,
            notion_version=config.notion_version,
            page_delay=config.page_delay_ms / 1000,
        ),
        destination=DestinationClient(engine, policy=policy),
        checkpoints=CheckpointStore(session_maker),
        session_maker=session_maker,
    )
