"""SQLAlchemy ORM models — single source of truth for the database schema.

Declarative mapping in SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Column types are the portable ones (Uuid, JSON) so the same models run on
PostgreSQL in production and SQLite in the test suite.

Ownership:
- users / routes / buses are maintained by the admin CRUD screens; the
  realtime core only reads them, except users.selected_route_id (route
  subscription) and the buses stop columns (driver stop updates).
- notifications / user_notifications are written by the notification
  service and consumed by mark-read.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ══════════════════════════════════════════════════════════════
# Fleet: users, routes, buses
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A student, driver or admin.

    Students pick a route at registration (selected_route_id); that is the
    route channel they auto-join on connect and the audience key for admin
    notifications.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="student"
    )  # student, driver, admin
    selected_route_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("routes.id", ondelete="SET NULL"), nullable=True
    )
    assigned_bus_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("buses.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Route(Base):
    """An ordered list of stops, optionally served by one bus."""

    __tablename__ = "routes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    route_name: Mapped[str] = mapped_column(String(100), nullable=False)
    stops: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )  # [{"name": "Elm St", "time": "07:40"}, ...]
    assigned_bus_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("buses.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Bus(Base):
    """A vehicle. Its stop progress is written only by its assigned driver."""

    __tablename__ = "buses"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    bus_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=40)
    # users -> routes -> buses -> users is a cycle; this edge is added by ALTER.
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey(
            "users.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_buses_driver_id_users",
        ),
        nullable=True,
    )
    current_stop_index: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_updated: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Notifications
# ══════════════════════════════════════════════════════════════


class Notification(Base):
    """Shared record of one broadcast, however many routes it reached.

    related_route_id is a display fallback (the first targeted route) when
    the audience spans several routes. read_by collects users who
    acknowledged through this shared record instead of an inbox row.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_route_created", "related_route_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="general"
    )
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default="medium"
    )
    related_route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False
    )
    related_bus_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("buses.id", ondelete="SET NULL"), nullable=True
    )
    sent_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    read_by: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )  # user id strings
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class UserNotification(Base):
    """One recipient's inbox copy. Deleted, not flagged, when read."""

    __tablename__ = "user_notifications"
    __table_args__ = (
        Index("idx_user_notifications_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_route_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=True
    )
    related_bus_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("buses.id", ondelete="SET NULL"), nullable=True
    )
    notification_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="general"
    )
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default="medium"
    )
    sent_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
