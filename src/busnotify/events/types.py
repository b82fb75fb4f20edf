"""Realtime event names — the closed set of socket events.

Centralizing event names as enums prevents typos and makes the wire
protocol discoverable in one place. Values are the exact socket.io event
names the web client listens for, so they stay camelCase.
"""

from enum import Enum


class InboundEvent(str, Enum):
    """Client → server commands."""

    SUBSCRIBE_TO_ROUTE = "subscribeToRoute"
    SEND_NOTIFICATION = "sendNotification"
    MARK_NOTIFICATION_READ = "markNotificationRead"
    DRIVER_UPDATE_STOP = "driverUpdateStop"
    DRIVER_TRIP_COMPLETED = "driverTripCompleted"


class OutboundEvent(str, Enum):
    """Server → client events."""

    # Caller only
    SUBSCRIPTION_CONFIRMED = "subscriptionConfirmed"
    NOTIFICATION_SENT = "notificationSent"
    NOTIFICATION_READ = "notificationRead"
    STOP_UPDATE_CONFIRMED = "stopUpdateConfirmed"
    TRIP_COMPLETED_CONFIRMED = "tripCompletedConfirmed"
    SOCKET_ERROR = "socketError"

    # Route channel
    NOTIFICATION = "notification"
    BUS_LOCATION_UPDATE = "busLocationUpdate"
    DRIVER_UPDATES_CLEAR = "driverUpdatesClear"
