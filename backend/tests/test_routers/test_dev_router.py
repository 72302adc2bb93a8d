import pytest
from httpx import AsyncClient

from silroad.config import settings


@pytest.mark.asyncio
async def test_purge_cache_in_development(client: AsyncClient, session_manager, session_cache, user):
    """Orphaned cache entries are purged; live ones stay."""
    issued = await session_manager.create(user)
    await session_cache.put("orphan", "{}", ttl_seconds=600)

    resp = await client.post("/dev/cache/purge")

    assert resp.status_code == 200
    assert resp.json() == {"status": "cleaned", "purged": 1}
    assert await session_cache.list() == [issued.token]


@pytest.mark.asyncio
async def test_purge_cache_forbidden_in_production(client: AsyncClient, monkeypatch):
    """The maintenance route refuses to run in production."""
    monkeypatch.setattr(settings, "app_env", "production")

    resp = await client.post("/dev/cache/purge")
    assert resp.status_code == 403
