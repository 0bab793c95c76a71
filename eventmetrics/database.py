from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from eventmetrics.config import settings
from eventmetrics.models.base import Base
from eventmetrics.storage.sqlalchemy_store import SqlAlchemyMetricStore

engine: AsyncEngine = create_async_engine(settings.DATABASE_URL, echo=False)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create every table registered on :data:`Base.metadata` if missing."""
    # Import for the side effect of registering mapped classes.
    import eventmetrics.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_metric_store(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> SqlAlchemyMetricStore:
    """Return a SQL-backed metric store using *session_factory* or the default one."""
    return SqlAlchemyMetricStore(session_factory or AsyncSessionLocal)
