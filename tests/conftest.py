"""Shared test fixtures for the notion-mirror test suite."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from notion_mirror.core.config import SyncConfig
from notion_mirror.core.database import Base
# Import all models so their metadata is registered on Base
import notion_mirror.models.checkpoint  # noqa: F401
import notion_mirror.models.sync_log  # noqa: F401
from notion_mirror.services.checkpoint import CheckpointStore
from notion_mirror.services.destination import DestinationClient
from notion_mirror.services.retry import RetryPolicy

TABLE = "notion_pages"
DATABASE_ID = "db-123"


@pytest_asyncio.fixture
async def engine():
    """
    In-memory SQLite engine shared by every connection of one test.

    Creates the bookkeeping tables before the test, disposes after.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_maker):
    """Provide an async session on the in-memory database."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def fast_policy():
    """Retry policy with no real waiting between attempts."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def destination(engine, fast_policy):
    return DestinationClient(engine, policy=fast_policy)


@pytest.fixture
def checkpoints(session_maker):
    return CheckpointStore(session_maker)


@pytest.fixture
def sync_config():
    return SyncConfig(
        notion_token="secret_test",
        notion_database_id=DATABASE_ID,
        table_name=TABLE,
        batch_size=100,
        max_retries=2,
        retry_delay_ms=0,
        page_delay_ms=0,
    )


def make_page(
    page_id: str,
    properties: dict | None = None,
    last_edited_time: str = "2024-01-02T10:00:00.000Z",
    created_time: str = "2024-01-01T09:00:00.000Z",
) -> dict:
    """Build a Notion page object as returned by the query endpoint."""
    return {
        "object": "page",
        "id": page_id,
        "created_time": created_time,
        "last_edited_time": last_edited_time,
        "properties": properties or {},
    }


def title(text: str) -> dict:
    return {"type": "title", "title": [{"plain_text": text}]}


def number(value) -> dict:
    return {"type": "number", "number": value}


def select(name: str | None) -> dict:
    return {"type": "select", "select": {"name": name} if name is not None else None}


def checkbox(value: bool) -> dict:
    return {"type": "checkbox", "checkbox": value}


def multi_select(*names: str) -> dict:
    return {"type": "multi_select", "multi_select": [{"name": n} for n in names]}
