"""FastAPI + Socket.IO application factory.

Learn: create_app() returns a configured FastAPI instance with its own
RealtimeHub on app.state.realtime. The module-level ``app`` is what
uvicorn serves: a socketio.ASGIApp that answers /socket.io itself and
hands every other request to FastAPI.

Lifespan manages Redis (optional) and the database engine. The Redis
mirror is attached to the hub's EventBus at startup and detached at
shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

import socketio
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from busnotify import __version__
from busnotify.api import api_router
from busnotify.config import settings
from busnotify.db.engine import async_session_factory, engine
from busnotify.middleware.rate_limit import RateLimitMiddleware
from busnotify.middleware.request_id import RequestIdMiddleware
from busnotify.middleware.security import SecurityHeadersMiddleware
from busnotify.realtime.pubsub import close_redis, init_redis, redis_mirror
from busnotify.realtime.server import create_realtime_hub

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "busnotify.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        socketio_path=settings.socketio_path,
    )

    hub = app.state.realtime
    detach_mirror = None
    try:
        redis = await init_redis()
        logger.info("busnotify.redis_connected", url=settings.redis_url)
        if settings.redis_mirror_enabled:
            detach_mirror = hub.bus.subscribe(redis_mirror(redis))
    except Exception as e:
        # Redis is optional — live delivery works without it
        logger.warning("busnotify.redis_unavailable", error=str(e))

    yield

    logger.info(
        "busnotify.shutdown",
        connections=hub.router.session_count,
    )
    if detach_mirror is not None:
        detach_mirror()
    await close_redis()
    await engine.dispose()


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """Build and return the FastAPI application with its realtime hub."""
    app = FastAPI(
        title="BusNotify",
        description="Realtime notifications, presence and broadcast for the school-bus tracker",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.realtime = create_realtime_hub(
        session_factory or async_session_factory,
        cors_origins=settings.cors_origins,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        admin_send_rpm=settings.rate_limit_admin_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    return app


def create_asgi_app(api: Optional[FastAPI] = None) -> socketio.ASGIApp:
    """Put the socket.io server in front of the FastAPI app."""
    api = api or create_app()
    return socketio.ASGIApp(
        api.state.realtime.sio,
        other_asgi_app=api,
        socketio_path=settings.socketio_path,
    )


# Default instances (uvicorn: busnotify.main:app)
api = create_app()
app = create_asgi_app(api)
