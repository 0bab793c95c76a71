from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

# Override DATABASE_URL before any eventmetrics module is imported so that
# eventmetrics.config.settings picks up the in-memory SQLite URL.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Import all models so that Base.metadata is fully populated before we call
# create_all.
import eventmetrics.models  # noqa: E402, F401
from eventmetrics.models.base import Base  # noqa: E402
from eventmetrics.storage.memory import InMemoryMetricStore  # noqa: E402
from eventmetrics.storage.sqlalchemy_store import SqlAlchemyMetricStore  # noqa: E402

_TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite async engine and build the schema.

    ``StaticPool`` keeps a single connection so every session sees the same
    in-memory database.
    """
    async_engine = create_async_engine(
        _TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_engine

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await async_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture()
def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlAlchemyMetricStore:
    """A SQL-backed store over the in-memory test database."""
    return SqlAlchemyMetricStore(session_factory)


@pytest.fixture()
def memory_store() -> InMemoryMetricStore:
    return InMemoryMetricStore()


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest, sql_store: SqlAlchemyMetricStore):
    """Each store adapter in turn, for tests of the port contract."""
    if request.param == "memory":
        return InMemoryMetricStore()
    return sql_store
