from contextlib import asynccontextmanager
from fastapi import FastAPI

from notion_mirror.core.config import APP_VERSION, get_settings
from notion_mirror.core.database import close_db, init_db
from notion_mirror.core.logging_config import setup_logging
from notion_mirror.api import config, sync
from notion_mirror.services.scheduler import start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    setup_logging(get_settings().log_level)
    await init_db()
    start_scheduler()
    yield
    # Shutdown
    stop_scheduler()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title="Notion Mirror",
    description="Mirrors a Notion database into a relational table",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Include routers
app.include_router(config.router)
app.include_router(sync.router)
