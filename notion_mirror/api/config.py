import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notion_mirror.core.config import APP_VERSION, get_settings
from notion_mirror.core.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["config"])


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
    database: str
    scheduler_enabled: bool


class ConfigResponse(BaseModel):
    table_name: str
    notion_database_id: str
    notion_version: str
    notion_token_configured: bool
    sync_batch_size: int
    max_retries: int
    retry_delay_ms: int
    sync_interval_minutes: int
    debug: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Liveness plus a round trip to the destination database."""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning(f"Health check could not reach the database: {e}")
        database = "unreachable"

    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=APP_VERSION,
        timestamp=datetime.now(timezone.utc),
        database=database,
        scheduler_enabled=get_settings().sync_interval_minutes > 0,
    )


@router.get("/config", response_model=ConfigResponse)
async def get_config() -> ConfigResponse:
    """Get current configuration (excluding secrets)."""
    settings = get_settings()
    return ConfigResponse(
        table_name=settings.table_name,
        notion_database_id=settings.notion_database_id,
        notion_version=settings.notion_version,
        notion_token_configured=bool(settings.notion_token),
        sync_batch_size=settings.sync_batch_size,
        max_retries=settings.max_retries,
        retry_delay_ms=settings.retry_delay_ms,
        sync_interval_minutes=settings.sync_interval_minutes,
        debug=settings.debug,
    )
