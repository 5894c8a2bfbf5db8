"""
Database engine and session management.

Provides the async SQLAlchemy engine, session factory and declarative base.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from marketsim.core.config import settings

Base = declarative_base()

engine_kwargs = {
    "echo": settings.DB_ECHO,
    "pool_pre_ping": True,
}
# SQLite (used in tests) does not take queue pool sizing
if not settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )

engine = create_async_engine(settings.DATABASE_URL, **engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def close_db() -> None:
    """Dispose of the connection pool."""
    await engine.dispose()
