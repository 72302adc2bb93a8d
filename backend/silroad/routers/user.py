"""User routes: current identity, account deletion."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from silroad.core.auth import clear_session_cookie, get_current_user
from silroad.dependencies import get_db, get_session_manager
from silroad.models.session import Session
from silroad.models.user import User
from silroad.schemas.session import UserIdentity
from silroad.services.session_service import SessionManager

logger = logging.getLogger("silroad.auth")

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/me", response_model=UserIdentity)
async def me(current_user: UserIdentity = Depends(get_current_user)):
    return current_user


@router.delete("", status_code=204)
async def delete_account(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    current_user: UserIdentity = Depends(get_current_user),
):
    # Row lock: logins committing after this point fail on the user FK
    await db.execute(select(User.id).where(User.id == current_user.id).with_for_update())
    removed = await manager.delete_by_user_id(current_user.id)

    # Sessions committed after the sweep where the row lock is unsupported (SQLite)
    result = await db.execute(select(Session.token).where(Session.user_id == current_user.id))
    for token in result.scalars().all():
        await manager.delete(token)
        removed += 1

    await db.execute(delete(User).where(User.id == current_user.id))
    await db.commit()
    logger.info("Deleted account %s and %d sessions", current_user.id, removed)

    request.state.session_token = None
    clear_session_cookie(response)
