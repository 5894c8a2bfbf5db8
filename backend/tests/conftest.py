import os

# Must be set before marketsim.core.config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GENERATION_SEED", "1234")

from datetime import date

import numpy as np
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketsim.services.storage.store import StoragePolicy, TimeSeriesStore
from marketsim.services.storage.upserter import BatchUpserter

FRIDAY = date(2024, 3, 15)
MONDAY = date(2024, 3, 18)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Run async tests on asyncio only."""
    return "asyncio"


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
async def engine(tmp_path, anyio_backend):
    """A file-backed SQLite engine per test. No tables are created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bars.db'}")
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
async def store(engine, anyio_backend) -> TimeSeriesStore:
    ts_store = TimeSeriesStore(engine, StoragePolicy())
    await ts_store.initialize()
    return ts_store


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def upserter(store, session_factory) -> BatchUpserter:
    return BatchUpserter(session_factory=session_factory, batch_size=100, retry_backoff_sec=0)
