"""Broadcast engine — room-style multicast over the membership registry.

Learn: Delivery is best-effort and at-most-once. There is no ack and no
retry; a connection that fails to receive is logged and skipped. Within
one route channel, messages go out in the order broadcast() is awaited,
because each call finishes all its sends before returning.

The engine doesn't care how targets were computed — the durable fan-out
(admin HTTP path) and the socket handlers both just hand it route ids.
"""

from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Optional

import structlog

from busnotify.realtime.pubsub import BroadcastEnvelope, EventBus
from busnotify.realtime.registry import RouteMembershipRegistry
from busnotify.schemas.realtime import OutboundMessage

logger = structlog.get_logger()

# (event name, JSON payload, connection id) → delivered to one connection.
Emitter = Callable[[str, dict[str, Any], str], Awaitable[None]]


class BroadcastEngine:
    """Deliver outbound messages to route channels or single connections."""

    def __init__(
        self,
        registry: RouteMembershipRegistry,
        emit: Emitter,
        bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self._emit = emit
        self.bus = bus or EventBus()

    async def broadcast(
        self, route_ids: Iterable[str], message: OutboundMessage
    ) -> int:
        """Send to every connection joined to any of the routes.

        Returns how many connections were reached. Zero is a valid outcome.
        """
        route_ids = tuple(dict.fromkeys(str(r) for r in route_ids))
        payload = message.to_wire()
        event_name = message.event.value

        delivered = 0
        for connection_id in self.registry.connections_for(route_ids):
            try:
                await self._emit(event_name, payload, connection_id)
                delivered += 1
            except Exception:
                logger.exception(
                    "broadcast.emit_failed",
                    event_name=event_name,
                    connection_id=connection_id,
                )

        if delivered == 0:
            logger.warning(
                "broadcast.no_recipients",
                event_name=event_name,
                route_ids=list(route_ids),
            )
        else:
            logger.info(
                "broadcast.sent",
                event_name=event_name,
                route_ids=list(route_ids),
                delivered=delivered,
            )

        await self.bus.publish(
            BroadcastEnvelope(
                event=message.event,
                route_ids=route_ids,
                payload=payload,
                delivered=delivered,
            )
        )
        return delivered

    async def send_to(self, connection_id: str, message: OutboundMessage) -> None:
        """Caller-only delivery (confirmations and socketError)."""
        await self._emit(message.event.value, message.to_wire(), connection_id)
