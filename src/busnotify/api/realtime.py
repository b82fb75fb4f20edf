"""Realtime presence routes (admin only).

Reads the in-process RouteMembershipRegistry. In a multi-process
deployment each process only sees its own connections.
"""

from fastapi import APIRouter, Depends

from busnotify.api.deps import get_realtime
from busnotify.auth.dependencies import require_admin
from busnotify.realtime.server import RealtimeHub
from busnotify.schemas.notification import RoutePresenceRead

router = APIRouter(prefix="/realtime", dependencies=[Depends(require_admin)])


@router.get("/routes", response_model=dict[str, int])
async def route_counts(hub: RealtimeHub = Depends(get_realtime)):
    """Route id → connected user count, for every route with members."""
    return hub.registry.snapshot()


@router.get("/routes/{route_id}/members", response_model=RoutePresenceRead)
async def route_members(route_id: str, hub: RealtimeHub = Depends(get_realtime)):
    registry = hub.registry
    return RoutePresenceRead(
        route_id=route_id,
        member_count=registry.member_count(route_id),
        connection_count=len(registry.connections_for([route_id])),
        user_ids=sorted(registry.members_of(route_id)),
    )
