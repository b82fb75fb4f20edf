"""Test fixtures — an in-memory store, a seeded fleet and a fake transport.

Learn: Testing pattern for the realtime core:

1. Each test gets a fresh in-memory SQLite engine (aiosqlite + StaticPool,
   so every session shares the one connection that holds the database).
2. ``fleet`` seeds three routes, three buses, two drivers, an admin and
   six students.
3. The socket.io transport is replaced by FakeEmitter, which records every
   (event, payload, connection id) the BroadcastEngine hands it.
4. HTTP tests go through httpx.ASGITransport with get_db and
   get_broadcaster overridden. Auth uses real tokens.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from busnotify.auth.jwt import create_access_token
from busnotify.db.models import Base, Bus, Route, User
from busnotify.realtime.authenticator import ConnectionAuthenticator
from busnotify.realtime.broadcast import BroadcastEngine
from busnotify.realtime.pubsub import EventBus
from busnotify.realtime.registry import RouteMembershipRegistry
from busnotify.realtime.router import EventRouter


# ─── Store ──────────────────────────────────────────────


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@dataclass
class Fleet:
    """Ids (as strings) of the seeded rows."""

    admin: str
    driver: str
    other_driver: str
    bus: str
    other_bus: str
    idle_bus: str
    route: str
    other_route: str
    third_route: str
    students: dict[str, list[str]]
    unrouted_student: str

    @property
    def routes(self) -> list[str]:
        return [self.route, self.other_route, self.third_route]


@pytest_asyncio.fixture()
async def fleet(session_factory) -> Fleet:
    """Three routes and five routed students.

    route        → bus (driver),        2 students, 5 stops
    other_route  → other_bus (other),   1 student,  3 stops
    third_route  → no bus,              2 students, no stops
    idle_bus has no driver and no route.
    """
    async with session_factory() as db:
        admin = User(email="admin@school.test", name="Ada Admin", role="admin")
        driver = User(email="dan@school.test", name="Dan Driver", role="driver")
        other_driver = User(email="olga@school.test", name="Olga Driver", role="driver")
        students = [
            User(email=f"student{i}@school.test", name=f"Student {i}", role="student")
            for i in range(6)
        ]
        db.add_all([admin, driver, other_driver, *students])
        await db.flush()

        bus = Bus(bus_number="B-1", driver_id=driver.id)
        other_bus = Bus(bus_number="B-2", driver_id=other_driver.id)
        idle_bus = Bus(bus_number="B-3")
        db.add_all([bus, other_bus, idle_bus])
        await db.flush()

        route = Route(
            route_name="Alpha",
            stops=[{"name": n} for n in ("Main St", "Oak Ave", "Elm St", "Pine Rd", "School")],
            assigned_bus_id=bus.id,
        )
        other_route = Route(
            route_name="Bravo",
            stops=[{"name": n} for n in ("North Gate", "Mill Ln", "School")],
            assigned_bus_id=other_bus.id,
        )
        third_route = Route(route_name="Charlie", stops=[])
        db.add_all([route, other_route, third_route])
        await db.flush()

        driver.assigned_bus_id = bus.id
        other_driver.assigned_bus_id = other_bus.id
        placement = [route, route, other_route, third_route, third_route]
        for student, r in zip(students, placement):
            student.selected_route_id = r.id
        await db.commit()

        by_route: dict[str, list[str]] = {}
        for student, r in zip(students, placement):
            by_route.setdefault(str(r.id), []).append(str(student.id))

        return Fleet(
            admin=str(admin.id),
            driver=str(driver.id),
            other_driver=str(other_driver.id),
            bus=str(bus.id),
            other_bus=str(other_bus.id),
            idle_bus=str(idle_bus.id),
            route=str(route.id),
            other_route=str(other_route.id),
            third_route=str(third_route.id),
            students=by_route,
            unrouted_student=str(students[5].id),
        )


def bearer(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


# ─── Realtime ───────────────────────────────────────────


@dataclass
class FakeEmitter:
    """Stands in for socket.io: records every emit, optionally failing some."""

    sent: list[tuple[str, dict[str, Any], str]] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)

    async def __call__(self, event: str, data: dict[str, Any], connection_id: str) -> None:
        if connection_id in self.failing:
            raise ConnectionResetError(f"{connection_id} went away")
        self.sent.append((event, data, connection_id))

    def to(self, connection_id: str, event: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            data
            for ev, data, cid in self.sent
            if cid == connection_id and (event is None or ev == event)
        ]

    def recipients(self, event: str) -> set[str]:
        return {cid for ev, _, cid in self.sent if ev == event}

    def clear(self) -> None:
        self.sent.clear()


@dataclass
class Realtime:
    registry: RouteMembershipRegistry
    bus: EventBus
    emitter: FakeEmitter
    broadcaster: BroadcastEngine
    router: EventRouter

    async def connect(self, connection_id: str, user_id: str):
        token = create_access_token(user_id)
        return await self.router.connect(connection_id, None, {"token": token})


@pytest_asyncio.fixture()
async def realtime(session_factory) -> Realtime:
    registry = RouteMembershipRegistry()
    bus = EventBus()
    emitter = FakeEmitter()
    broadcaster = BroadcastEngine(registry, emitter, bus)
    router = EventRouter(
        registry=registry,
        broadcaster=broadcaster,
        authenticator=ConnectionAuthenticator(session_factory),
        session_factory=session_factory,
    )
    return Realtime(registry, bus, emitter, broadcaster, router)


# ─── HTTP ───────────────────────────────────────────────


@pytest_asyncio.fixture()
async def app(session_factory, realtime):
    """A fresh app whose realtime hub shares the test registry and emitter."""
    from busnotify.api.deps import get_broadcaster
    from busnotify.db.engine import get_db
    from busnotify.main import create_app

    app = create_app(session_factory=session_factory)
    app.state.realtime.registry = realtime.registry
    app.state.realtime.router = realtime.router

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: realtime.broadcaster
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def headers(fleet):
    """Bearer headers per seeded identity: headers["admin"], headers["driver"]..."""
    return {
        "admin": bearer(fleet.admin),
        "driver": bearer(fleet.driver),
        "student": bearer(fleet.students[fleet.route][0]),
        "unrouted": bearer(fleet.unrouted_student),
    }
