"""Health check endpoint.

Learn: Verifies the server is up and its dependencies (Postgres, Redis)
are reachable, and reports how many realtime connections this process
is holding.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from busnotify import __version__
from busnotify.db.engine import engine
from busnotify.realtime.pubsub import get_redis

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    realtime = {}
    hub = getattr(request.app.state, "realtime", None)
    if hub is not None:
        realtime = {
            "connections": hub.router.session_count,
            "subscribed": hub.registry.connection_count,
            "routes": len(hub.registry.snapshot()),
        }

    return {"status": status, **checks, "realtime": realtime}
