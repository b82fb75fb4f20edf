"""Route membership registry — who is listening on which route, right now.

Learn: Membership is tracked per connection (a student with two browser
tabs has two connections) and reported per user for presence. A
connection belongs to at most one route channel at a time, mirroring one
physical location; subscribing elsewhere moves it.

Only the event loop thread touches these maps, so no locks. Callers that
await between deciding to join and calling join() must re-check the
connection is still live — join() itself never suspends.
"""

from dataclasses import dataclass
from enum import Enum

import structlog

logger = structlog.get_logger()


class JoinResult(str, Enum):
    JOINED = "joined"
    ALREADY_JOINED = "already_joined"
    SWITCHED = "switched"


@dataclass(frozen=True)
class Membership:
    user_id: str
    route_id: str


class RouteMembershipRegistry:
    """In-memory route → connections map with O(1) disconnect cleanup."""

    def __init__(self):
        self._routes: dict[str, set[str]] = {}
        self._connections: dict[str, Membership] = {}

    # ─── Mutations ──────────────────────────────────────

    def join(self, route_id: str, user_id: str, connection_id: str) -> JoinResult:
        """Put a connection in a route channel, leaving any previous one."""
        current = self._connections.get(connection_id)
        if current is not None and current.route_id == route_id:
            return JoinResult.ALREADY_JOINED

        result = JoinResult.JOINED
        if current is not None:
            self._discard(connection_id, current)
            result = JoinResult.SWITCHED

        self._routes.setdefault(route_id, set()).add(connection_id)
        self._connections[connection_id] = Membership(user_id=user_id, route_id=route_id)
        logger.debug(
            "registry.joined",
            route_id=route_id,
            user_id=user_id,
            connection_id=connection_id,
            result=result.value,
            connections=len(self._routes[route_id]),
        )
        return result

    def leave(self, connection_id: str) -> Membership | None:
        """Drop a connection's membership. Returns what it was, if anything."""
        membership = self._connections.pop(connection_id, None)
        if membership is None:
            return None
        self._discard(connection_id, membership)
        logger.debug(
            "registry.left",
            route_id=membership.route_id,
            user_id=membership.user_id,
            connection_id=connection_id,
        )
        return membership

    def _discard(self, connection_id: str, membership: Membership) -> None:
        members = self._routes.get(membership.route_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._routes[membership.route_id]

    # ─── Queries ────────────────────────────────────────

    def members_of(self, route_id: str) -> frozenset[str]:
        """User ids with at least one connection on the route."""
        return frozenset(
            self._connections[cid].user_id for cid in self._routes.get(route_id, ())
        )

    def member_count(self, route_id: str) -> int:
        return len(self.members_of(route_id))

    def connections_for(self, route_ids) -> list[str]:
        """Connection ids joined to any of the routes, grouped by route."""
        seen: set[str] = set()
        ordered: list[str] = []
        for route_id in route_ids:
            for cid in self._routes.get(route_id, ()):
                if cid not in seen:
                    seen.add(cid)
                    ordered.append(cid)
        return ordered

    def route_of(self, connection_id: str) -> str | None:
        membership = self._connections.get(connection_id)
        return membership.route_id if membership else None

    def has_route(self, route_id: str) -> bool:
        return route_id in self._routes

    def snapshot(self) -> dict[str, int]:
        """Route id → connected user count (for health/presence views)."""
        return {route_id: self.member_count(route_id) for route_id in self._routes}

    @property
    def connection_count(self) -> int:
        return len(self._connections)
