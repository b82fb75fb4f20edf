"""Event router — per-connection sessions and inbound command dispatch.

Learn: Each live connection moves through
    connecting → authenticated → (subscribed)* → disconnected
and ``subscribed`` is re-entrant (switching routes stays subscribed).

dispatch() is the single boundary for inbound traffic:
1. The connection must have a session (it authenticated at handshake)
2. The payload is validated into its command model
3. The handler runs against a fresh DB session
4. Any failure becomes a socketError sent to this connection only

Handlers suspend on every store call, and a second command from the same
connection can run in between. So handlers re-read what they need after
awaiting (e.g. whether the connection is still here before joining) and
leave ownership checks to the store write itself.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from busnotify.errors import BusNotifyError, InvalidPayloadError, NotAuthenticatedError
from busnotify.events.types import InboundEvent
from busnotify.realtime.authenticator import ConnectedUser, ConnectionAuthenticator
from busnotify.realtime.broadcast import BroadcastEngine
from busnotify.realtime.registry import JoinResult, RouteMembershipRegistry
from busnotify.schemas.realtime import (
    BusLocationUpdate,
    DriverTripCompleted,
    DriverUpdatesClear,
    DriverUpdateStop,
    MarkNotificationRead,
    NotificationRead,
    NotificationSent,
    SendNotification,
    SocketError,
    StopUpdateConfirmed,
    SubscribeToRoute,
    SubscriptionConfirmed,
    TripCompletedConfirmed,
    parse_command,
)
from busnotify.services.fleet_service import FleetService
from busnotify.services.notification_service import (
    NotificationService,
    build_notification_message,
)

logger = structlog.get_logger()


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


@dataclass
class ConnectionSession:
    """Router-owned state for one live connection."""

    connection_id: str
    user: ConnectedUser
    state: ConnectionState = ConnectionState.AUTHENTICATED
    subscribed_route_id: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_id(self) -> str:
        return self.user.user_id


# Generic messages when a handler fails unexpectedly.
FAILURE_MESSAGES = {
    InboundEvent.SUBSCRIBE_TO_ROUTE: "Failed to subscribe to route",
    InboundEvent.SEND_NOTIFICATION: "Failed to send notification",
    InboundEvent.MARK_NOTIFICATION_READ: "Failed to mark notification as read",
    InboundEvent.DRIVER_UPDATE_STOP: "Failed to update bus stop",
    InboundEvent.DRIVER_TRIP_COMPLETED: "Failed to complete trip",
}


class EventRouter:
    """Own connection sessions and route inbound commands to handlers."""

    def __init__(
        self,
        *,
        registry: RouteMembershipRegistry,
        broadcaster: BroadcastEngine,
        authenticator: ConnectionAuthenticator,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.authenticator = authenticator
        self._session_factory = session_factory
        self._sessions: dict[str, ConnectionSession] = {}
        self._handlers: dict[InboundEvent, Callable[[ConnectionSession, Any], Awaitable[None]]] = {
            InboundEvent.SUBSCRIBE_TO_ROUTE: self._subscribe_to_route,
            InboundEvent.SEND_NOTIFICATION: self._send_notification,
            InboundEvent.MARK_NOTIFICATION_READ: self._mark_notification_read,
            InboundEvent.DRIVER_UPDATE_STOP: self._driver_update_stop,
            InboundEvent.DRIVER_TRIP_COMPLETED: self._driver_trip_completed,
        }

    # ─── Lifecycle ──────────────────────────────────────

    async def connect(
        self,
        connection_id: str,
        environ: Optional[dict[str, Any]] = None,
        auth: Any = None,
    ) -> ConnectionSession:
        """Authenticate a handshake and open a session.

        Raises AuthenticationError; the transport refuses the connection.
        Students with a selected route are joined to it straight away.
        """
        user = await self.authenticator.authenticate(environ, auth)
        session = ConnectionSession(connection_id=connection_id, user=user)
        self._sessions[connection_id] = session

        if user.selected_route_id:
            self.registry.join(user.selected_route_id, user.user_id, connection_id)
            session.subscribed_route_id = user.selected_route_id
            session.state = ConnectionState.SUBSCRIBED

        logger.info(
            "realtime.connected",
            connection_id=connection_id,
            user_id=user.user_id,
            role=user.role,
            route_id=session.subscribed_route_id,
            route_members=(
                self.registry.member_count(session.subscribed_route_id)
                if session.subscribed_route_id
                else None
            ),
        )
        return session

    async def disconnect(self, connection_id: str) -> None:
        """Always legal. Leaves the route channel; nothing is broadcast."""
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            session.state = ConnectionState.DISCONNECTED
        membership = self.registry.leave(connection_id)
        logger.info(
            "realtime.disconnected",
            connection_id=connection_id,
            user_id=session.user_id if session else None,
            route_id=membership.route_id if membership else None,
            route_members=(
                self.registry.member_count(membership.route_id) if membership else None
            ),
        )

    def session(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._sessions.get(connection_id)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # ─── Dispatch ───────────────────────────────────────

    async def dispatch(self, connection_id: str, event: str, data: Any = None) -> None:
        """Handle one inbound command. Never raises."""
        session = self._sessions.get(connection_id)
        log = logger.bind(
            event_name=event,
            connection_id=connection_id,
            user_id=session.user_id if session else None,
        )
        try:
            if session is None:
                raise NotAuthenticatedError()
            try:
                inbound = InboundEvent(event)
            except ValueError:
                raise InvalidPayloadError(f"Unknown event: {event}")
            command = parse_command(inbound, data)
            await self._handlers[inbound](session, command)
        except BusNotifyError as e:
            log.warning("realtime.command_rejected", error=e.message)
            await self._reply_error(connection_id, e.message)
        except Exception:
            log.exception("realtime.command_failed")
            message = next(
                (msg for ev, msg in FAILURE_MESSAGES.items() if ev.value == event),
                "Internal server error",
            )
            await self._reply_error(connection_id, message)

    async def _reply_error(self, connection_id: str, message: str) -> None:
        try:
            await self.broadcaster.send_to(connection_id, SocketError(error=message))
        except Exception:
            logger.exception("realtime.error_reply_failed", connection_id=connection_id)

    # ─── Handlers ───────────────────────────────────────

    async def _subscribe_to_route(self, session: ConnectionSession, cmd: SubscribeToRoute) -> None:
        async with self._session_factory() as db:
            route = await FleetService(db).select_route(session.user_id, cmd.route_id)
        route_id = str(route.id)

        # The connection may have dropped while the store was busy.
        if self._sessions.get(session.connection_id) is not session:
            logger.info(
                "realtime.subscribe_after_disconnect",
                connection_id=session.connection_id,
                route_id=route_id,
            )
            return

        result = self.registry.join(route_id, session.user_id, session.connection_id)
        session.subscribed_route_id = route_id
        session.state = ConnectionState.SUBSCRIBED
        logger.info(
            "realtime.subscribed",
            connection_id=session.connection_id,
            user_id=session.user_id,
            route_id=route_id,
            already_joined=result is JoinResult.ALREADY_JOINED,
            route_members=self.registry.member_count(route_id),
        )
        await self.broadcaster.send_to(session.connection_id, SubscriptionConfirmed())

    async def _send_notification(self, session: ConnectionSession, cmd: SendNotification) -> None:
        async with self._session_factory() as db:
            notification, route_ids = await NotificationService(db).create_shared(
                sender_id=session.user_id,
                title=cmd.title,
                message=cmd.message,
                related_route=cmd.related_route,
                related_bus=cmd.related_bus,
                notification_type=cmd.notification_type,
                priority=cmd.priority,
            )

        for route_id in route_ids:
            await self.broadcaster.broadcast(
                [str(route_id)],
                build_notification_message(
                    notification,
                    related_route=route_id,
                    sender_name=session.user.name,
                ),
            )
        await self.broadcaster.send_to(
            session.connection_id,
            NotificationSent(notification_id=notification.id),
        )

    async def _mark_notification_read(
        self, session: ConnectionSession, cmd: MarkNotificationRead
    ) -> None:
        async with self._session_factory() as db:
            await NotificationService(db).mark_read(session.user_id, cmd.notification_id)
        await self.broadcaster.send_to(
            session.connection_id,
            NotificationRead(notification_id=cmd.notification_id),
        )

    async def _driver_update_stop(self, session: ConnectionSession, cmd: DriverUpdateStop) -> None:
        async with self._session_factory() as db:
            update = await FleetService(db).record_stop(
                driver_id=session.user_id,
                bus_id=cmd.bus_id,
                route_id=cmd.route_id,
                stop_index=cmd.current_stop_index,
                stop_name=cmd.stop_name,
            )

        await self.broadcaster.broadcast(
            [str(update.route.id)],
            BusLocationUpdate(
                bus_id=update.bus.id,
                route_id=update.route.id,
                current_stop_index=update.stop_index,
                stop_name=update.stop_name,
                bus_number=update.bus.bus_number,
                driver_name=update.driver.name,
                timestamp=update.timestamp,
            ),
        )
        await self.broadcaster.send_to(
            session.connection_id,
            StopUpdateConfirmed(stop_index=update.stop_index, stop_name=update.stop_name),
        )

    async def _driver_trip_completed(
        self, session: ConnectionSession, cmd: DriverTripCompleted
    ) -> None:
        async with self._session_factory() as db:
            bus, route = await FleetService(db).authorize_trip_completion(
                driver_id=session.user_id, bus_id=cmd.bus_id, route_id=cmd.route_id
            )

        await self.broadcaster.broadcast(
            [str(route.id)],
            DriverUpdatesClear(route_id=route.id, bus_id=bus.id),
        )
        await self.broadcaster.send_to(session.connection_id, TripCompletedConfirmed())
