import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from silroad.config import settings
from silroad.core.auth import SessionMiddleware
from silroad.core.cache import get_cache
from silroad.core.errors import register_error_handlers
from silroad.core.middleware import AccessLogMiddleware, RequestIDMiddleware
from silroad.dependencies import async_session_factory, engine
from silroad.routers import auth, dev, user
from silroad.services.session_service import SessionManager
from silroad.services.session_sweeper import SessionSweeper

logger = logging.getLogger("silroad")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create tables, wire the session manager, run the expiry sweeper."""
    from silroad.models.base import Base
    import silroad.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified/created")

    cache = get_cache()
    manager = SessionManager.from_settings(async_session_factory, cache, settings)
    application.state.session_manager = manager

    sweeper = None
    if settings.session_sweep_interval_minutes > 0:
        sweeper = SessionSweeper(manager, settings.session_sweep_interval_minutes * 60)
        sweeper.start()

    yield

    if sweeper is not None:
        await sweeper.stop()
    await cache.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Middleware: last added = outermost. Sessions resolve innermost so the
# access log sees request.state.user_id.
app.add_middleware(SessionMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id"],
)

register_error_handlers(app)

app.include_router(auth.router)
app.include_router(user.router)
app.include_router(dev.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.app_name, "version": "0.1.0"}


def run() -> None:
    import uvicorn

    uvicorn.run("silroad.main:app", host=settings.host, port=settings.port)
