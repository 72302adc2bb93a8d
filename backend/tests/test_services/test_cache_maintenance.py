"""Cache maintenance tests: orphaned snapshot purge."""

from datetime import timedelta

import pytest

from silroad.services.cache_maintenance import purge_orphaned_entries


@pytest.mark.asyncio
async def test_purge_keeps_live_sessions(session_manager, user, session_cache, db_session, clock):
    """Entries backed by a live durable row survive; the rest are evicted."""
    live = await session_manager.create(user)
    await session_cache.put("orphan", "{}", ttl_seconds=600)

    purged = await purge_orphaned_entries(db_session, session_cache, now=clock())

    assert purged == 1
    assert await session_cache.list() == [live.token]


@pytest.mark.asyncio
async def test_purge_evicts_entries_for_expired_rows(
    session_manager, user, session_cache, seed_session, db_session, clock
):
    """A cached token whose row has expired counts as orphaned."""
    await seed_session("expired", "u1", clock() - timedelta(seconds=1))
    await session_cache.put("expired", "{}", ttl_seconds=600)

    assert await purge_orphaned_entries(db_session, session_cache, now=clock()) == 1
    assert await session_cache.get("expired") is None


@pytest.mark.asyncio
async def test_purge_empty_cache(session_cache, db_session, clock):
    """Nothing cached, nothing purged."""
    assert await purge_orphaned_entries(db_session, session_cache, now=clock()) == 0
