"""Session service: issue, resolve, refresh and retire login sessions.

Sessions live in two places:
- the ``sessions`` table, which is authoritative
- the session cache, holding a JSON snapshot (session + user display fields)
  keyed by token, with a TTL matching the session expiry

Durable writes are committed before the dependent cache write. The cache is
never written with an expiry the durable row does not carry, and a cached
snapshot past its expiry is evicted on read. Storage failures are logged and
turned into "no session" results; they never escape to callers.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from silroad.core.cache import SessionCache, SessionCacheError
from silroad.core.security import generate_session_token
from silroad.models.session import Session
from silroad.models.user import User
from silroad.schemas.session import IssuedSession, SessionData, SessionRecord, UserIdentity

logger = logging.getLogger("silroad.sessions")

SESSION_LIFETIME = timedelta(days=30)
REFRESH_HORIZON = timedelta(hours=48)
MAX_TOKEN_ATTEMPTS = 3

_DB_ERRORS = (SQLAlchemyError, OSError)
_CACHE_ERRORS = (SessionCacheError, TimeoutError, OSError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _short(token: str) -> str:
    return token[:8]


class SessionManager:
    """Single owner of session state in the database and the cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: SessionCache,
        *,
        lifetime: timedelta = SESSION_LIFETIME,
        refresh_horizon: timedelta = REFRESH_HORIZON,
        cache_timeout: float | None = 0.5,
        token_factory: Callable[[], str] = generate_session_token,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self.lifetime = lifetime
        self.refresh_horizon = refresh_horizon
        self._cache_timeout = cache_timeout
        self._token_factory = token_factory
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        cache: SessionCache,
        settings,
    ) -> "SessionManager":
        return cls(
            session_factory,
            cache,
            lifetime=timedelta(days=settings.session_lifetime_days),
            refresh_horizon=timedelta(hours=settings.session_refresh_horizon_hours),
            cache_timeout=settings.cache_timeout_seconds,
        )

    def now(self) -> datetime:
        return self._clock()

    def needs_refresh(self, session: SessionData) -> bool:
        """True when the session expires within the refresh horizon."""
        return session.expires_at <= self._clock() + self.refresh_horizon

    # ── Public operations ─────────────────────────────────────────

    async def create(self, user: UserIdentity) -> IssuedSession | None:
        """Issue a new session for an already-authenticated user.

        Returns None if the durable write fails. A failed cache write is
        logged only; the next lookup falls back to the database.
        """
        expires_at = self._clock() + self.lifetime

        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            token = self._token_factory()
            try:
                async with self._session_factory() as db:
                    db.add(Session(token=token, user_id=user.id, expires_at=expires_at))
                    await db.commit()
            except IntegrityError as e:
                if await self._token_exists(token):
                    logger.warning(
                        "component=durable op=create token collision attempt=%d", attempt
                    )
                    continue
                self._log_failure("durable", "create", e, token)
                return None
            except _DB_ERRORS as e:
                self._log_failure("durable", "create", e, token)
                return None
            break
        else:
            logger.error(
                "component=durable op=create gave up after %d token collisions",
                MAX_TOKEN_ATTEMPTS,
            )
            return None

        snapshot = SessionData(
            user_id=user.id,
            user_email=user.email,
            user_name=user.name,
            user_image=user.image,
            expires_at=expires_at,
        )
        await self._write_snapshot(token, snapshot, op="create")
        return IssuedSession(token=token, expires_at=expires_at)

    async def get_by_token(self, token: str) -> SessionData | None:
        """Resolve a token to its session, cache first.

        A cache hit never reads the database. A miss reads the session joined
        to its user, writes the snapshot back to the cache, then re-checks the
        row so a logout racing the write-back cannot resurrect the token.
        """
        now = self._clock()

        cached = await self._read_snapshot(token)
        if cached is not None:
            if cached.expires_at <= now:
                await self._evict(token, op="get_by_token")
                return None
            return cached

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        Session.user_id,
                        Session.expires_at,
                        User.email,
                        User.name,
                        User.image,
                    )
                    .join(User, Session.user_id == User.id)
                    .where(Session.token == token, Session.expires_at > now)
                    .limit(1)
                )
                row = result.one_or_none()
        except _DB_ERRORS as e:
            self._log_failure("durable", "get_by_token", e, token)
            return None

        if row is None:
            return None

        session = SessionData(
            user_id=row.user_id,
            user_email=row.email,
            user_name=row.name,
            user_image=row.image,
            expires_at=_as_utc(row.expires_at),
        )
        await self._write_snapshot(token, session, op="get_by_token")

        # A delete or invalidate committed since the read must not leave the
        # written-back snapshot behind
        if not await self._is_live(token):
            await self._evict(token, op="get_by_token")
            return None
        return session

    async def refresh(self, token: str, current: SessionData) -> SessionData | None:
        """Slide the expiry forward if it falls within the refresh horizon.

        Outside the horizon the input is returned as-is with no writes.
        Returns None if the row no longer exists (or was tombstoned) or the
        database write failed. A missing row also drops the cached snapshot.
        """
        now = self._clock()
        if current.expires_at > now + self.refresh_horizon:
            return current

        expires_at = now + self.lifetime
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(Session)
                    .where(Session.token == token, Session.expires_at > now)
                    .values(expires_at=expires_at)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except _DB_ERRORS as e:
            self._log_failure("durable", "refresh", e, token)
            return None

        if result.rowcount == 0:
            logger.info("op=refresh token=%s no live session to refresh", _short(token))
            await self._evict(token, op="refresh")
            return None

        refreshed = current.model_copy(update={"expires_at": expires_at})
        await self._write_snapshot(token, refreshed, op="refresh")
        return refreshed

    async def invalidate(self, token: str) -> None:
        """Tombstone the session: expire the row now, drop the cache entry.

        The row itself is removed later by delete_expired().
        """
        tombstone = self._clock() - timedelta(seconds=1)
        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(Session)
                    .where(Session.token == token, Session.expires_at > tombstone)
                    .values(expires_at=tombstone)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except _DB_ERRORS as e:
            self._log_failure("durable", "invalidate", e, token)
        await self._evict(token, op="invalidate")

    async def delete(self, token: str) -> None:
        """Hard-delete the session from both stores. Used for logout."""
        try:
            async with self._session_factory() as db:
                await db.execute(delete(Session).where(Session.token == token))
                await db.commit()
        except _DB_ERRORS as e:
            self._log_failure("durable", "delete", e, token)
        await self._evict(token, op="delete")

    async def delete_by_user_id(self, user_id: str) -> int:
        """Delete every session of a user. Returns the number of rows removed."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Session.token).where(Session.user_id == user_id)
                )
                tokens = list(result.scalars().all())
                if not tokens:
                    return 0
                result = await db.execute(delete(Session).where(Session.token.in_(tokens)))
                await db.commit()
        except _DB_ERRORS as e:
            self._log_failure("durable", "delete_by_user_id", e)
            return 0

        await self._evict_many(tokens, op="delete_by_user_id")
        logger.info("op=delete_by_user_id removed=%d", result.rowcount)
        return result.rowcount

    async def get_expired(self, before: datetime) -> list[SessionRecord]:
        """List durable sessions that expired before the given instant."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Session)
                    .where(Session.expires_at < before)
                    .order_by(Session.expires_at.asc())
                )
                rows = result.scalars().all()
        except _DB_ERRORS as e:
            self._log_failure("durable", "get_expired", e)
            return []
        return [
            SessionRecord(token=r.token, user_id=r.user_id, expires_at=_as_utc(r.expires_at))
            for r in rows
        ]

    async def delete_expired(self) -> int:
        """Sweep expired (and tombstoned) sessions. Returns rows removed."""
        now = self._clock()
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Session.token).where(Session.expires_at <= now)
                )
                tokens = list(result.scalars().all())
                if not tokens:
                    return 0
                result = await db.execute(delete(Session).where(Session.token.in_(tokens)))
                await db.commit()
        except _DB_ERRORS as e:
            self._log_failure("durable", "delete_expired", e)
            return 0

        await self._evict_many(tokens, op="delete_expired")
        return result.rowcount

    # ── Internals ─────────────────────────────────────────────────

    async def _token_exists(self, token: str) -> bool:
        try:
            async with self._session_factory() as db:
                return await db.get(Session, token) is not None
        except _DB_ERRORS as e:
            self._log_failure("durable", "create", e, token)
            return False

    async def _is_live(self, token: str) -> bool:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Session.token).where(
                        Session.token == token, Session.expires_at > self._clock()
                    )
                )
                return result.first() is not None
        except _DB_ERRORS as e:
            self._log_failure("durable", "get_by_token", e, token)
            return False

    async def _cache_call(self, coro):
        if self._cache_timeout is None:
            return await coro
        return await asyncio.wait_for(coro, self._cache_timeout)

    def _ttl(self, expires_at: datetime) -> int:
        return math.ceil((expires_at - self._clock()).total_seconds())

    async def _read_snapshot(self, token: str) -> SessionData | None:
        try:
            raw = await self._cache_call(self._cache.get(token))
        except _CACHE_ERRORS as e:
            self._log_failure("cache", "get_by_token", e, token)
            return None
        if raw is None:
            return None
        try:
            return SessionData.model_validate_json(raw)
        except ValidationError:
            logger.warning("component=cache op=get_by_token token=%s unreadable snapshot", _short(token))
            await self._evict(token, op="get_by_token")
            return None

    async def _write_snapshot(self, token: str, session: SessionData, *, op: str) -> None:
        ttl = self._ttl(session.expires_at)
        try:
            if ttl <= 0:
                await self._cache_call(self._cache.delete(token))
                return
            await self._cache_call(self._cache.put(token, session.model_dump_json(), ttl))
        except _CACHE_ERRORS as e:
            self._log_failure("cache", op, e, token)

    async def _evict(self, token: str, *, op: str) -> None:
        try:
            await self._cache_call(self._cache.delete(token))
        except _CACHE_ERRORS as e:
            self._log_failure("cache", op, e, token)

    async def _evict_many(self, tokens: list[str], *, op: str) -> None:
        results = await asyncio.gather(
            *(self._cache_call(self._cache.delete(t)) for t in tokens),
            return_exceptions=True,
        )
        failures = 0
        for outcome in results:
            if isinstance(outcome, _CACHE_ERRORS):
                failures += 1
            elif isinstance(outcome, BaseException):
                raise outcome
        if failures:
            logger.warning(
                "component=cache op=%s failed to evict %d of %d entries",
                op,
                failures,
                len(tokens),
            )

    def _log_failure(self, component: str, op: str, error: BaseException, token: str | None = None) -> None:
        logger.error(
            "component=%s op=%s token=%s error=%r",
            component,
            op,
            _short(token) if token else "-",
            error,
            exc_info=error,
        )
