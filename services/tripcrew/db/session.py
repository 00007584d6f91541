"""
Request-scoped session dependency.

The factory lives on app.state (built in lifespan with expire_on_commit=False,
so rows stay readable after the commit hands the NullPool connection back).
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.tripcrew.errors import Unavailable


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    factory: async_sessionmaker | None = getattr(request.app.state, "db_session_factory", None)
    if factory is None:
        raise Unavailable("Database is not configured.")
    async with factory() as session:
        yield session
