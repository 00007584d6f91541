"""
AsyncEngine factory and standalone session context manager.

NullPool because PgBouncer owns connection pooling; SA should not
maintain its own pool on top.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from services.tripcrew.config import settings


def create_engine() -> AsyncEngine:
    """Create async engine for use with PgBouncer transaction-mode pooling."""
    url = settings.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return create_async_engine(
        url,
        poolclass=NullPool,
        echo=settings.debug and settings.environment == "development",
    )


@asynccontextmanager
async def standalone_session():
    """
    For code that runs outside a FastAPI request (one-off scripts, manual sweeps).
    Handles engine lifecycle to prevent connection leaks with NullPool.
    """
    engine = create_engine()
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()
