"""Request authentication: session cookie -> SessionManager -> request.state.

SessionMiddleware resolves the session cookie on every request and attaches
the identity to request.state. Sessions close to expiry are refreshed in a
background task that runs after the response is sent.
"""

import asyncio
import logging
import math
from datetime import datetime

from fastapi import HTTPException, Request, status
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from silroad.config import settings
from silroad.dependencies import get_session_manager
from silroad.schemas.session import SessionData, UserIdentity
from silroad.services.session_service import SessionManager

logger = logging.getLogger("silroad.auth")


def set_session_cookie(response: Response, token: str, expires_at: datetime, now: datetime) -> None:
    """Write the session cookie, valid until expires_at."""
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=max(math.floor((expires_at - now).total_seconds()), 0),
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


async def _resolve(manager: SessionManager, token: str) -> SessionData | None:
    try:
        return await asyncio.wait_for(
            manager.get_by_token(token), timeout=settings.auth_timeout_seconds
        )
    except TimeoutError:
        logger.warning("Session lookup timed out after %.1fs", settings.auth_timeout_seconds)
        return None


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach user/session from the session cookie to request.state."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.user = None
        request.state.session = None
        request.state.session_token = None

        token = request.cookies.get(settings.session_cookie_name)
        if not token:
            return await call_next(request)

        manager = get_session_manager(request)
        session = await _resolve(manager, token)

        if session is None:
            response = await call_next(request)
            # Handlers may have issued a fresh session (login) on this response
            if "set-cookie" not in response.headers:
                clear_session_cookie(response)
            return response

        request.state.session = session
        request.state.session_token = token
        request.state.user = session.identity()
        request.state.user_id = session.user_id

        response = await call_next(request)

        if (
            request.state.session_token == token
            and manager.needs_refresh(session)
            and getattr(response, "background", None) is None
        ):
            # Cookie expiry is taken before the refresh runs, so it never passes
            # the expiry the refresh writes. If the refresh finds no live row it
            # evicts the snapshot and the next request clears this cookie.
            now = manager.now()
            response.background = BackgroundTask(manager.refresh, token, session)
            set_session_cookie(response, token, now + manager.lifetime, now)
        return response


def get_current_user(request: Request) -> UserIdentity:
    """FastAPI dependency: the authenticated user, or 401."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user


def get_current_session(request: Request) -> SessionData:
    """FastAPI dependency: the resolved session, or 401."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return session
