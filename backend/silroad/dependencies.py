"""FastAPI dependencies: database sessions and the session manager."""

from collections.abc import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from silroad.config import settings
from silroad.core.errors import ServiceUnavailableError
from silroad.services.session_service import SessionManager

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a request-scoped DB session, committed when the request succeeds."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_manager(request: Request) -> SessionManager:
    """Return the app's SessionManager. Raises if the app was not wired with one."""
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise ServiceUnavailableError("Session store not available")
    return manager
