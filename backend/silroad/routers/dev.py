"""Development-only maintenance routes."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from silroad.config import settings
from silroad.core.cache import get_cache
from silroad.dependencies import get_db, get_session_manager
from silroad.services import cache_maintenance
from silroad.services.session_service import SessionManager

router = APIRouter(prefix="/dev", tags=["dev"])


def _require_development() -> None:
    if settings.is_production:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden in production",
        )


@router.post("/cache/purge", dependencies=[Depends(_require_development)])
async def purge_cache(
    db: AsyncSession = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    purged = await cache_maintenance.purge_orphaned_entries(db, get_cache(), now=manager.now())
    return {"status": "cleaned", "purged": purged}
