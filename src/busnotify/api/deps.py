"""Shared API dependencies for reaching the realtime core.

The RealtimeHub is built per app in create_app() and lives on app.state,
so tests can swap the broadcaster with dependency_overrides.
"""

from fastapi import Request

from busnotify.realtime.broadcast import BroadcastEngine
from busnotify.realtime.server import RealtimeHub


def get_realtime(request: Request) -> RealtimeHub:
    return request.app.state.realtime


def get_broadcaster(request: Request) -> BroadcastEngine:
    return get_realtime(request).broadcaster
