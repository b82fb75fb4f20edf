"""Fleet service — the realtime core's view of users, routes and buses.

Learn: The socket handlers never query the database directly. They ask
this service, which turns "not there" and "not yours" into the named
errors the router reports back as socketError.

Ids arrive from clients as strings; anything that isn't a UUID simply
doesn't exist.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from busnotify.db.models import Bus, Route, User
from busnotify.errors import (
    BusNotFoundError,
    BusNotifyError,
    DriverNotFoundError,
    InvalidPayloadError,
    NotDriverOfBusError,
    RouteMismatchError,
    RouteNotFoundError,
)

logger = structlog.get_logger()


def as_uuid(value, error: type[BusNotifyError]) -> uuid.UUID:
    """Parse a client-supplied id, raising ``error`` if it can't be one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise error()


@dataclass
class StopUpdate:
    """Result of a successful driver stop update."""

    bus: Bus
    driver: User
    route: Route
    stop_index: int
    stop_name: str
    timestamp: datetime


class FleetService:
    """Lookups and the two fleet mutations the realtime core owns."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def get_user(self, user_id) -> Optional[User]:
        try:
            return await self.db.get(User, as_uuid(user_id, DriverNotFoundError))
        except DriverNotFoundError:
            return None

    async def get_route(self, route_id) -> Route:
        route = await self.db.get(Route, as_uuid(route_id, RouteNotFoundError))
        if not route:
            raise RouteNotFoundError()
        return route

    async def get_bus(self, bus_id) -> Bus:
        bus = await self.db.get(Bus, as_uuid(bus_id, BusNotFoundError))
        if not bus:
            raise BusNotFoundError()
        return bus

    async def routes_for_bus(self, bus_id) -> list[Route]:
        """Every route the bus is assigned to, oldest first."""
        try:
            bid = as_uuid(bus_id, BusNotFoundError)
        except BusNotFoundError:
            return []
        result = await self.db.execute(
            select(Route)
            .where(Route.assigned_bus_id == bid)
            .order_by(Route.created_at, Route.id)
        )
        return list(result.scalars().all())

    async def all_route_ids(self) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(Route.id).order_by(Route.created_at, Route.id)
        )
        return list(result.scalars().all())

    # ─── Route subscription ─────────────────────────────

    async def select_route(self, user_id: str, route_id: str) -> Route:
        """Persist a user's selected route so future connects auto-join it."""
        route = await self.get_route(route_id)
        await self.db.execute(
            update(User)
            .where(User.id == as_uuid(user_id, DriverNotFoundError))
            .values(selected_route_id=route.id)
        )
        await self.db.commit()
        return route

    # ─── Driver actions ─────────────────────────────────

    async def _authorize_driver(self, driver_id: str, bus_id: str) -> tuple[User, Bus]:
        driver = await self.get_user(driver_id)
        if not driver:
            raise DriverNotFoundError()
        bus = await self.get_bus(bus_id)
        if bus.driver_id is None:
            raise NotDriverOfBusError("No driver assigned to this bus")
        if bus.driver_id != driver.id:
            raise NotDriverOfBusError()
        return driver, bus

    async def _route_of_bus(self, bus: Bus, route_id) -> Route:
        """The bus's route named by route_id (any spelling of the UUID)."""
        routes = await self.routes_for_bus(bus.id)
        if not routes:
            raise RouteMismatchError("No route assigned to this bus")
        rid = as_uuid(route_id, RouteMismatchError)
        route = next((r for r in routes if r.id == rid), None)
        if route is None:
            raise RouteMismatchError()
        return route

    async def record_stop(
        self,
        *,
        driver_id: str,
        bus_id: str,
        route_id: str,
        stop_index: int,
        stop_name: str,
    ) -> StopUpdate:
        """Move a bus to a stop on behalf of its assigned driver.

        Checks, in order: driver exists, bus exists, bus has a driver,
        caller is that driver, bus serves a route, and this is one of them.
        """
        driver, bus = await self._authorize_driver(driver_id, bus_id)

        route = await self._route_of_bus(bus, route_id)
        if route.stops and stop_index >= len(route.stops):
            raise InvalidPayloadError("Stop index out of range for this route")

        # Guard on driver_id in the UPDATE itself: a reassignment that
        # landed after the ownership check must win.
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(Bus)
            .where(Bus.id == bus.id, Bus.driver_id == driver.id)
            .values(current_stop_index=stop_index, last_updated=now)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotDriverOfBusError()
        await self.db.commit()

        logger.info(
            "fleet.stop_updated",
            bus_number=bus.bus_number,
            driver=driver.name,
            route_id=str(route.id),
            stop_index=stop_index,
            stop_name=stop_name,
        )
        return StopUpdate(
            bus=bus,
            driver=driver,
            route=route,
            stop_index=stop_index,
            stop_name=stop_name,
            timestamp=now,
        )

    async def authorize_trip_completion(
        self, *, driver_id: str, bus_id: str, route_id: str
    ) -> tuple[Bus, Route]:
        """Only the bus's assigned driver may end its trip, on one of its routes."""
        try:
            _, bus = await self._authorize_driver(driver_id, bus_id)
        except (DriverNotFoundError, BusNotFoundError, NotDriverOfBusError):
            raise NotDriverOfBusError("Not authorized to complete this trip")
        return bus, await self._route_of_bus(bus, route_id)
