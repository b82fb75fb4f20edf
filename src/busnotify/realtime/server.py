"""Socket.IO server — the transport in front of the event router.

Learn: python-socketio owns the wire (Engine.IO polling + WebSocket
upgrades, reconnects, pings). Everything above the wire lives in our own
objects so it can be tested without a socket:

    socket.io handshake → EventRouter.connect()   (refuse on auth failure)
    socket.io event     → EventRouter.dispatch()  (never raises)
    socket.io close     → EventRouter.disconnect()

Route channels are NOT socket.io rooms. Membership lives in
RouteMembershipRegistry and the BroadcastEngine emits to each sid, so
presence can be read back without poking at socket.io internals.
"""

from dataclasses import dataclass
from typing import Any, Optional

import socketio
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from busnotify.config import settings
from busnotify.errors import AuthenticationError
from busnotify.events.types import InboundEvent
from busnotify.realtime.authenticator import ConnectionAuthenticator
from busnotify.realtime.broadcast import BroadcastEngine
from busnotify.realtime.pubsub import EventBus
from busnotify.realtime.registry import RouteMembershipRegistry
from busnotify.realtime.router import EventRouter

logger = structlog.get_logger()


@dataclass
class RealtimeHub:
    """Everything one process needs to serve realtime traffic."""

    registry: RouteMembershipRegistry
    bus: EventBus
    broadcaster: BroadcastEngine
    authenticator: ConnectionAuthenticator
    router: EventRouter
    sio: socketio.AsyncServer


def bind_events(sio: socketio.AsyncServer, router: EventRouter) -> None:
    """Attach connect/disconnect and every inbound command to the router."""

    async def connect(sid: str, environ: dict[str, Any], auth: Any = None):
        try:
            await router.connect(sid, environ, auth)
        except AuthenticationError as e:
            logger.info("realtime.handshake_refused", connection_id=sid, reason=e.message)
            raise socketio.exceptions.ConnectionRefusedError(e.message)

    async def disconnect(sid: str, reason: Any = None):
        await router.disconnect(sid)

    sio.on("connect", connect)
    sio.on("disconnect", disconnect)

    for event in InboundEvent:

        def make_handler(name: str):
            async def handler(sid: str, data: Any = None):
                await router.dispatch(sid, name, data)

            return handler

        sio.on(event.value, make_handler(event.value))

    # Anything else (e.g. a legacy "authenticate") still gets a socketError.
    async def unknown(event: str, sid: str, data: Any = None):
        await router.dispatch(sid, event, data)

    sio.on("*", unknown)


def create_realtime_hub(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    cors_origins: Optional[list[str]] = None,
) -> RealtimeHub:
    """Build the socket.io server and wire it to a fresh realtime core."""
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=cors_origins if cors_origins is not None else settings.cors_origins,
        logger=False,
        engineio_logger=False,
    )

    async def emit(event: str, data: dict[str, Any], connection_id: str) -> None:
        await sio.emit(event, data, to=connection_id)

    registry = RouteMembershipRegistry()
    bus = EventBus()
    broadcaster = BroadcastEngine(registry, emit, bus)
    authenticator = ConnectionAuthenticator(session_factory)
    router = EventRouter(
        registry=registry,
        broadcaster=broadcaster,
        authenticator=authenticator,
        session_factory=session_factory,
    )
    bind_events(sio, router)

    return RealtimeHub(
        registry=registry,
        bus=bus,
        broadcaster=broadcaster,
        authenticator=authenticator,
        router=router,
        sio=sio,
    )
