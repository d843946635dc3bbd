"""Pydantic models for sync results and API responses."""

from datetime import datetime
from pydantic import BaseModel
from typing import Any


class SyncStats(BaseModel):
    """Counts for one sync run."""
    total_fetched: int
    total_transformed: int
    total_synced: int
    transformation_rate: float
    sync_rate: float
    transform_errors: int = 0


class SyncResult(BaseModel):
    """Outcome of one sync run."""
    success: bool
    start_time: datetime
    end_time: datetime
    duration: int  # milliseconds
    duration_seconds: int
    sync_type: str
    stats: SyncStats
    schema_changes: dict[str, Any] | None = None
    config: dict[str, Any]


class SyncStatsResponse(BaseModel):
    """Checkpoint and row count for the configured database."""
    database_id: str
    table_name: str
    last_sync_time: datetime | None
    processed_count: int | None
    sync_type: str | None
    created_at: datetime | None
    updated_at: datetime | None
    table_row_count: int | None


class SyncStatusResponse(BaseModel):
    is_running: bool
    last_run_at: datetime | None
    last_status: str
    last_error: str | None
    last_details: dict[str, Any] | None


class SyncErrorResponse(BaseModel):
    success: bool = False
    error: str
    kind: str
    code: str | None = None
