"""Auth routes: register, login, logout, current session."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from silroad.config import settings
from silroad.core.auth import clear_session_cookie, get_current_session, set_session_cookie
from silroad.core.security import hash_password, verify_credentials
from silroad.dependencies import get_db, get_session_manager
from silroad.models.user import User
from silroad.schemas.session import IssuedSession, SessionData, UserIdentity
from silroad.schemas.user import LoginResponse, UserCreate, UserLogin, UserRead
from silroad.services.session_service import SessionManager

logger = logging.getLogger("silroad.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


def _start_session(
    request: Request,
    response: Response,
    manager: SessionManager,
    issued: IssuedSession,
) -> None:
    set_session_cookie(response, issued.token, issued.expires_at, manager.now())
    # The middleware must not refresh or clear the cookie for this response
    request.state.session_token = issued.token


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    body: UserCreate,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    result = await db.execute(select(User).where(User.email == body.email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        image=None,
    )
    db.add(user)
    # Session rows reference the user, so it must be committed first
    await db.commit()

    issued = await manager.create(UserIdentity.model_validate(user))
    if issued is None:
        logger.warning("Registered user %s but could not issue a session", user.id)
    else:
        _start_session(request, response, manager, issued)
    return user


@router.post("/login", response_model=LoginResponse)
async def login(
    body: UserLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    identity = await verify_credentials(db, email=body.email, password=body.password)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    issued = await manager.create(identity)
    if issued is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to create session",
        )

    _start_session(request, response, manager, issued)
    return LoginResponse(user_id=identity.id, expires_at=issued.expires_at)


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
):
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        await manager.delete(token)
    request.state.session_token = None
    clear_session_cookie(response)


@router.get("/session", response_model=SessionData)
async def current_session(session: SessionData = Depends(get_current_session)):
    return session
