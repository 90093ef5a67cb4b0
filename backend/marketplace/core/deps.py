from collections.abc import AsyncGenerator

from fastapi import Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.db.session import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    The session is automatically closed when the request finishes.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


class Pagination:
    """Offset/limit query parameters shared by every listing endpoint."""

    def __init__(
        self,
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=settings.page_limit_default, ge=1, le=settings.page_limit_max),
    ):
        self.offset = offset
        self.limit = limit
