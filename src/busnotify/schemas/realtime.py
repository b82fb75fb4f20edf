"""Pydantic schemas for the socket protocol.

Inbound: one model per InboundEvent. parse_command() is the single
validation gate in front of the event router — handlers only ever see a
validated model, never the raw payload.

Outbound: one model per OutboundEvent, each tagged with its event name via
the ``event`` class attribute. to_wire() renders the camelCase JSON dict the
web client expects.
"""

import uuid
from datetime import datetime
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from busnotify.errors import InvalidPayloadError
from busnotify.events.types import InboundEvent, OutboundEvent

NotificationType = Literal["general", "delay", "cancellation", "update"]
Priority = Literal["low", "medium", "high", "urgent"]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ─── Inbound (client → server) ──────────────────────────


class SubscribeToRoute(WireModel):
    route_id: str = Field(..., min_length=1)


class SendNotification(WireModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    related_route: Optional[str] = None
    related_bus: Optional[str] = None
    notification_type: NotificationType = "general"
    priority: Priority = "medium"

    @field_validator("notification_type", "priority", mode="before")
    @classmethod
    def _blank_means_default(cls, value, info):
        if value in (None, ""):
            return "general" if info.field_name == "notification_type" else "medium"
        return value

    @field_validator("related_route", "related_bus", mode="before")
    @classmethod
    def _blank_means_none(cls, value):
        return value or None


class MarkNotificationRead(WireModel):
    notification_id: str = Field(..., min_length=1)


class DriverUpdateStop(WireModel):
    bus_id: str = Field(..., min_length=1)
    route_id: str = Field(..., min_length=1)
    current_stop_index: int = Field(..., ge=0)
    stop_name: str = Field(..., min_length=1, max_length=200)


class DriverTripCompleted(WireModel):
    bus_id: str = Field(..., min_length=1)
    route_id: str = Field(..., min_length=1)


InboundCommand = (
    SubscribeToRoute
    | SendNotification
    | MarkNotificationRead
    | DriverUpdateStop
    | DriverTripCompleted
)

INBOUND_COMMANDS: dict[InboundEvent, type[WireModel]] = {
    InboundEvent.SUBSCRIBE_TO_ROUTE: SubscribeToRoute,
    InboundEvent.SEND_NOTIFICATION: SendNotification,
    InboundEvent.MARK_NOTIFICATION_READ: MarkNotificationRead,
    InboundEvent.DRIVER_UPDATE_STOP: DriverUpdateStop,
    InboundEvent.DRIVER_TRIP_COMPLETED: DriverTripCompleted,
}


def parse_command(event: InboundEvent, data: Any) -> InboundCommand:
    """Validate a raw socket payload into its command model.

    subscribeToRoute is sent as a bare route id string; every other
    command is an object.
    """
    if event is InboundEvent.SUBSCRIBE_TO_ROUTE and isinstance(data, str):
        data = {"routeId": data}
    if not isinstance(data, dict):
        raise InvalidPayloadError(f"Invalid {event.value} payload")

    model = INBOUND_COMMANDS[event]
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "payload"
        raise InvalidPayloadError(
            f"Invalid {event.value} payload: {field} {first['msg'].lower()}"
        ) from e


# ─── Outbound (server → client) ─────────────────────────


class OutboundMessage(WireModel):
    """Base for server → client payloads."""

    event: ClassVar[OutboundEvent]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SubscriptionConfirmed(OutboundMessage):
    event = OutboundEvent.SUBSCRIPTION_CONFIRMED


class NotificationMessage(OutboundMessage):
    """Live copy of a notification pushed to a route channel."""

    event = OutboundEvent.NOTIFICATION

    id: uuid.UUID
    title: str
    message: str
    notification_type: str
    priority: str
    sent_by: uuid.UUID
    sender_name: Optional[str] = None
    related_route: Optional[uuid.UUID] = None
    related_bus: Optional[uuid.UUID] = None
    created_at: datetime
    is_read: bool = False


class NotificationSent(OutboundMessage):
    event = OutboundEvent.NOTIFICATION_SENT

    success: bool = True
    notification_id: uuid.UUID


class NotificationRead(OutboundMessage):
    event = OutboundEvent.NOTIFICATION_READ

    notification_id: str


class BusLocationUpdate(OutboundMessage):
    event = OutboundEvent.BUS_LOCATION_UPDATE

    bus_id: uuid.UUID
    route_id: uuid.UUID
    current_stop_index: int
    stop_name: str
    bus_number: str
    driver_name: str
    timestamp: datetime
    type: Literal["location_update"] = "location_update"


class DriverUpdatesClear(OutboundMessage):
    event = OutboundEvent.DRIVER_UPDATES_CLEAR

    route_id: uuid.UUID
    bus_id: uuid.UUID


class StopUpdateConfirmed(OutboundMessage):
    event = OutboundEvent.STOP_UPDATE_CONFIRMED

    success: bool = True
    stop_index: int
    stop_name: str


class TripCompletedConfirmed(OutboundMessage):
    event = OutboundEvent.TRIP_COMPLETED_CONFIRMED

    success: bool = True


class SocketError(OutboundMessage):
    event = OutboundEvent.SOCKET_ERROR

    error: str
