"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health is open. Every other router protects its own routes:
notifications mixes caller-level and admin-only endpoints, so auth is
declared per route there instead of at include_router level.
"""

from fastapi import APIRouter

from busnotify.api.health import router as health_router
from busnotify.api.notifications import router as notifications_router
from busnotify.api.realtime import router as realtime_router

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes — bearer JWT (admin where noted)
api_router.include_router(notifications_router, tags=["notifications"])
api_router.include_router(realtime_router, tags=["realtime"])
