"""Shared test fixtures: in-memory SQLite DB, in-memory cache, controllable clock, test client."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from silroad.core.cache import InMemorySessionCache, SessionCacheError, set_cache
from silroad.core.security import hash_password
from silroad.dependencies import get_db
from silroad.main import app
from silroad.models.base import Base
from silroad.models.session import Session
from silroad.models.user import User
from silroad.schemas.session import UserIdentity
from silroad.services.session_service import SessionManager

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# One shared connection so the session manager's own sessions see the same DB.
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)


# Enable foreign key enforcement in SQLite (off by default).
@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


class FakeClock:
    """Settable UTC clock shared by the session manager and the cache."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    def timestamp(self) -> float:
        return self.current.timestamp()


class FailingCache(InMemorySessionCache):
    """Cache whose every operation fails, as if Redis were unreachable."""

    async def get(self, key):
        raise SessionCacheError("cache down")

    async def put(self, key, value, ttl_seconds=None):
        raise SessionCacheError("cache down")

    async def delete(self, key):
        raise SessionCacheError("cache down")

    async def list(self):
        raise SessionCacheError("cache down")


class _BrokenSession:
    async def __aenter__(self):
        raise ConnectionRefusedError("database down")

    async def __aexit__(self, *exc):
        return False


def broken_session_factory():
    """Stand-in for async_sessionmaker whose sessions cannot connect."""
    return _BrokenSession()


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Yield a test DB session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_cache(clock: FakeClock) -> InMemorySessionCache:
    return InMemorySessionCache(clock=clock.timestamp)


@pytest.fixture
def session_factory():
    return test_session_factory


@pytest.fixture
def failing_cache() -> FailingCache:
    return FailingCache()


@pytest.fixture
def manager_factory(session_cache: InMemorySessionCache, clock: FakeClock):
    """Build a SessionManager; defaults to the test DB, cache and clock."""

    def _build(*, session_factory=test_session_factory, cache=None, **kwargs) -> SessionManager:
        return SessionManager(
            session_factory,
            session_cache if cache is None else cache,
            clock=clock,
            **kwargs,
        )

    return _build


@pytest.fixture
def session_manager(manager_factory) -> SessionManager:
    return manager_factory()


@pytest.fixture
def offline_manager(manager_factory) -> SessionManager:
    """Shares the cache with session_manager but cannot reach the database."""
    return manager_factory(session_factory=broken_session_factory)


async def _create_user(
    db: AsyncSession,
    *,
    id: str = "u1",
    email: str = "a@x.com",
    name: str = "A",
    image: str | None = None,
    password: str = "SecurePass123!",
) -> UserIdentity:
    user = User(id=id, email=email, name=name, image=image, password_hash=hash_password(password))
    db.add(user)
    await db.commit()
    return UserIdentity.model_validate(user)


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory fixture: insert a user and return its identity."""

    async def _make(**kwargs) -> UserIdentity:
        return await _create_user(db_session, **kwargs)

    return _make


@pytest_asyncio.fixture
async def user(make_user) -> UserIdentity:
    return await make_user()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    session_manager: SessionManager,
    session_cache: InMemorySessionCache,
) -> AsyncClient:
    """Yield an httpx AsyncClient wired to the test DB, cache and session manager."""

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.session_manager = session_manager
    set_cache(session_cache)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.session_manager = None
    set_cache(None)


@pytest.fixture
def seed_session(db_session: AsyncSession):
    """Factory fixture: insert a durable session row directly, bypassing the cache."""

    async def _seed(token: str, user_id: str, expires_at: datetime) -> None:
        db_session.add(Session(token=token, user_id=user_id, expires_at=expires_at))
        await db_session.commit()

    return _seed


@pytest.fixture
def durable_expiry(db_session: AsyncSession):
    """Read a session's expiry straight from the database (None if no row)."""

    async def _read(token: str) -> datetime | None:
        result = await db_session.execute(
            select(Session.expires_at).where(Session.token == token)
        )
        value = result.scalar_one_or_none()
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    return _read


@pytest.fixture
def broken_factory():
    return broken_session_factory
