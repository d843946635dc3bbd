"""Sync API endpoints."""

import logging
from dataclasses import dataclass
from typing import AsyncGenerator
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from notion_mirror.core.database import get_db, engine
from notion_mirror.core.config import SyncConfig, get_settings
from notion_mirror.core.exceptions import ConfigurationError, NotionMirrorError
from notion_mirror.models.sync_log import SyncLog
from notion_mirror.schemas.responses import SyncErrorResponse, SyncResult, SyncStatsResponse, SyncStatusResponse
from notion_mirror.services.sync import SyncService, build_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@dataclass
class _RunState:
    is_running: bool = False


_run_state = _RunState()


async def get_sync_service() -> AsyncGenerator[SyncService, None]:
    """Dependency that builds a SyncService from settings."""
    try:
        config = SyncConfig.from_settings(get_settings())
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=e.to_dict())

    service = build_sync_service(config, engine)
    try:
        yield service
    finally:
        await service.close()


def _error_response(status_code: int, error: NotionMirrorError) -> JSONResponse:
    body = SyncErrorResponse(error=error.message, kind=error.kind, code=error.code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.post("", response_model=SyncResult, responses={409: {}, 500: {"model": SyncErrorResponse}})
async def run_sync(
    force_full_sync: bool = False,
    dry_run: bool = False,
    max_records: int | None = Query(default=None, ge=1),
    service: SyncService = Depends(get_sync_service),
):
    """Run one sync and return its statistics."""
    if _run_state.is_running:
        raise HTTPException(
            status_code=409,
            detail="A sync is already running. Check /api/sync/status for progress.",
        )

    _run_state.is_running = True
    try:
        await service.initialize()
        return await service.sync(
            force_full_sync=force_full_sync,
            dry_run=dry_run,
            max_records=max_records,
        )
    except ConfigurationError as e:
        return _error_response(500, e)
    except NotionMirrorError as e:
        logger.error(f"Sync request failed: {e}")
        return _error_response(502, e)
    finally:
        _run_state.is_running = False


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(db: AsyncSession = Depends(get_db)):
    """Get sync status - last run time and outcome."""
    result = await db.execute(
        select(SyncLog)
        .order_by(desc(SyncLog.completed_at))
        .limit(1)
    )
    last_log = result.scalar_one_or_none()

    return SyncStatusResponse(
        is_running=_run_state.is_running,
        last_run_at=last_log.completed_at if last_log else None,
        last_status=last_log.status if last_log else "never_synced",
        last_error=last_log.error_message if last_log else None,
        last_details=last_log.details if last_log else None,
    )


@router.get("/stats", response_model=SyncStatsResponse)
async def sync_stats(service: SyncService = Depends(get_sync_service)):
    """Checkpoint and row count for the configured Notion database."""
    return await service.get_sync_stats()
