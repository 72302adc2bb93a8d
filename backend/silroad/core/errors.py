"""JSON error bodies for every failure: {error, status_code, detail, request_id}."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("silroad")


class ServiceUnavailableError(RuntimeError):
    """A backing service (database, cache) the request needs is not wired in.

    Surfaces as a 500. Never treated as "not logged in".
    """


def _error_response(
    request: Request,
    status_code: int,
    detail,
    headers: dict[str, str] | None = None,
    **extra,
) -> JSONResponse:
    body = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        **extra,
        "request_id": getattr(request.state, "request_id", None),
    }
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on the app."""

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException):
        return _error_response(request, exc.status_code, exc.detail, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation error",
            errors=exc.errors(),
        )

    @app.exception_handler(ServiceUnavailableError)
    async def on_service_unavailable(request: Request, exc: ServiceUnavailableError):
        logger.error("request_id=%s service unavailable: %s", getattr(request.state, "request_id", "-"), exc)
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        logger.exception("request_id=%s unhandled error", getattr(request.state, "request_id", "-"))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
