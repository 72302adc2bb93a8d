"""Middleware: request ID injection, structured access logging."""

import hashlib
import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("silroad.access")

# Accept a caller-supplied request ID only if it looks like one of ours
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9-]{8,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request/response pair with an X-Request-ID."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if _REQUEST_ID_RE.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One key=value line per request. User IDs are hashed, tokens never logged."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000

        state = request.state
        user_id = getattr(state, "user_id", None)
        authenticated = "yes" if getattr(state, "session", None) else "no"

        logger.info(
            "request_id=%s user=%s auth=%s ip=%s method=%s path=%s status=%d elapsed_ms=%.1f",
            getattr(state, "request_id", "-"),
            _hash_user_id(user_id) if user_id else "-",
            authenticated,
            request.client.host if request.client else "-",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response


def _hash_user_id(uid: str) -> str:
    return hashlib.sha256(uid.encode()).hexdigest()[:12]
