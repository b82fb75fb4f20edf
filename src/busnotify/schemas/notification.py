"""Pydantic schemas for the notification HTTP API.

Learn: Same camelCase convention as the socket protocol (WireModel), so
the web client uses one set of field names for both transports.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from busnotify.schemas.realtime import NotificationType, Priority, WireModel


# ─── Admin send ─────────────────────────────────────────


class AdminSendRequest(WireModel):
    """Admin fan-out request (durable + live)."""

    target_type: Literal["all", "route", "bus"] = Field(
        ..., description="Audience: every route, one route, or one bus's routes"
    )
    related_route: Optional[str] = Field(None, description="Route id when targetType=route")
    related_bus: Optional[str] = Field(None, description="Bus id when targetType=bus")
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    notification_type: NotificationType = "general"
    priority: Priority = "medium"

    @field_validator("related_route", "related_bus", mode="before")
    @classmethod
    def _blank_means_none(cls, value):
        return value or None


class AdminSendResponse(WireModel):
    success: bool = True
    message: str
    total_users: int
    global_notification_id: uuid.UUID
    db_copies_created: int


# ─── Inbox ──────────────────────────────────────────────


class InboxItemRead(WireModel):
    """One unread inbox row."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    message: str
    notification_type: str
    priority: str
    related_route: Optional[uuid.UUID] = Field(
        None, validation_alias="related_route_id", serialization_alias="relatedRoute"
    )
    related_bus: Optional[uuid.UUID] = Field(
        None, validation_alias="related_bus_id", serialization_alias="relatedBus"
    )
    sent_by: Optional[uuid.UUID] = Field(
        None, validation_alias="sent_by_id", serialization_alias="sentBy"
    )
    is_read: bool = False
    created_at: datetime


class MarkReadResponse(WireModel):
    success: bool = True
    notification_id: str
    consumed: bool = Field(
        ..., description="True when an inbox row was deleted, False for a shared-record ack"
    )


class MarkAllReadResponse(WireModel):
    message: str
    deleted_count: int


# ─── Targets & presence ─────────────────────────────────


class NotificationTargetRead(WireModel):
    """A route with at least one subscribed user."""

    id: uuid.UUID
    route_name: str
    assigned_bus_id: Optional[uuid.UUID] = None
    bus_number: Optional[str] = None
    user_count: int


class RoutePresenceRead(WireModel):
    route_id: str
    member_count: int
    connection_count: int
    user_ids: list[str]
