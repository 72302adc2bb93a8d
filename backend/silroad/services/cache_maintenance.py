"""Cache maintenance for development: drop cache entries with no live session.

Entries normally expire through their TTL. This is for local resets (e.g.
after wiping the database) where the cache still holds snapshots for rows
that no longer exist.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from silroad.core.cache import SessionCache
from silroad.models.session import Session

logger = logging.getLogger("silroad.sessions")


async def purge_orphaned_entries(
    db: AsyncSession,
    cache: SessionCache,
    *,
    now: datetime,
) -> int:
    """Delete cached tokens whose durable row is missing or expired."""
    keys = await cache.list()
    if not keys:
        return 0

    result = await db.execute(
        select(Session.token).where(Session.token.in_(keys), Session.expires_at > now)
    )
    live = set(result.scalars().all())

    purged = 0
    for key in keys:
        if key not in live:
            await cache.delete(key)
            purged += 1

    logger.info("Purged %d orphaned cache entries of %d", purged, len(keys))
    return purged
