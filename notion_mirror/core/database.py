from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator, Optional

from notion_mirror.core.config import get_settings

# Driver-less URLs as handed out by hosted Postgres providers
_POSTGRES_PREFIXES = ("postgres://", "postgresql://")


def async_database_url(url: str) -> str:
    """Point plain PostgreSQL URLs at the asyncpg driver; leave others alone."""
    for prefix in _POSTGRES_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Async engine for the destination database."""
    url = async_database_url(url)
    kwargs = {"echo": echo}
    if url.startswith("postgresql"):
        # Long-lived scheduler process; drop connections the server closed
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def make_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


settings = get_settings()

engine = create_engine(settings.database_url, echo=settings.debug)
async_session_maker = make_session_maker(engine)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create the sync_state and sync_log tables if missing.

    Mirror tables are not in the metadata; DestinationClient provisions them.
    """
    import notion_mirror.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of pooled connections."""
    await engine.dispose()
