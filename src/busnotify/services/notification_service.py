"""Notification service — durable fan-out, inbox and read receipts.

Learn: An admin notification is written twice:
1. One UserNotification per recipient (their inbox — survives offline)
2. One shared Notification (the broadcast record)

Both inserts commit together; then the live broadcast goes out. Durable
delivery is the contract. If the broadcast fails after the commit, it's
logged and the send still succeeds — offline or not, every recipient has
an inbox row.

Reading is consuming: marking an inbox row read deletes it. Ids that
aren't inbox rows fall back to the shared record's read_by list.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from busnotify.db.models import Bus, Notification, Route, User, UserNotification
from busnotify.errors import (
    InvalidTargetError,
    NoRecipientsFoundError,
    NotificationNotFoundError,
    NoTargetsFoundError,
)
from busnotify.realtime.broadcast import BroadcastEngine
from busnotify.schemas.realtime import NotificationMessage
from busnotify.services.fleet_service import FleetService, as_uuid

logger = structlog.get_logger()


@dataclass
class TargetResolution:
    """Concrete routes an audience selector expands to."""

    route_ids: list[uuid.UUID]
    bus_id: Optional[uuid.UUID]

    @property
    def fallback_route_id(self) -> Optional[uuid.UUID]:
        return self.route_ids[0] if self.route_ids else None


@dataclass
class FanOutResult:
    notification: Notification
    route_ids: list[uuid.UUID]
    total_users: int
    copies_created: int
    delivered: int = 0


def build_notification_message(
    notification: Notification,
    *,
    related_route: Optional[uuid.UUID] = None,
    sender_name: Optional[str] = None,
) -> NotificationMessage:
    """Live payload for a shared notification record."""
    return NotificationMessage(
        id=notification.id,
        title=notification.title,
        message=notification.message,
        notification_type=notification.notification_type,
        priority=notification.priority,
        sent_by=notification.sent_by_id,
        sender_name=sender_name,
        related_route=related_route or notification.related_route_id,
        related_bus=notification.related_bus_id,
        created_at=notification.created_at,
        is_read=False,
    )


class NotificationService:
    """Business logic for notification delivery and acknowledgement."""

    def __init__(self, db: AsyncSession, broadcaster: Optional[BroadcastEngine] = None):
        self.db = db
        self.broadcaster = broadcaster
        self.fleet = FleetService(db)

    # ─── Target resolution ──────────────────────────────

    async def resolve_targets(
        self,
        target_type: Optional[str],
        related_route: Optional[str] = None,
        related_bus: Optional[str] = None,
    ) -> TargetResolution:
        """Expand all / one route / one bus into route ids.

        A specific route must exist. A bus with no routes resolves to an
        empty list; callers decide whether that is an error.
        """
        bus_id = None
        if related_bus:
            try:
                bus_id = as_uuid(related_bus, InvalidTargetError)
            except InvalidTargetError:
                bus_id = None

        if target_type == "all":
            return TargetResolution(await self.fleet.all_route_ids(), bus_id)

        if related_route:
            route = await self.fleet.get_route(related_route)
            return TargetResolution([route.id], bus_id or route.assigned_bus_id)

        if related_bus:
            routes = await self.fleet.routes_for_bus(related_bus)
            return TargetResolution([r.id for r in routes], bus_id)

        raise InvalidTargetError(
            "A target (Specific Route, Bus, or All Routes) is required"
        )

    # ─── Socket send (shared record only) ───────────────

    async def create_shared(
        self,
        *,
        sender_id: str,
        title: str,
        message: str,
        related_route: Optional[str],
        related_bus: Optional[str],
        notification_type: str = "general",
        priority: str = "medium",
    ) -> tuple[Notification, list[uuid.UUID]]:
        """Persist one shared record for a live send. No inbox rows."""
        if not related_route and not related_bus:
            raise InvalidTargetError()
        targets = await self.resolve_targets(None, related_route, related_bus)
        if not targets.route_ids:
            raise InvalidTargetError()

        notification = Notification(
            title=title,
            message=message,
            related_route_id=targets.fallback_route_id,
            related_bus_id=targets.bus_id,
            notification_type=notification_type,
            priority=priority,
            sent_by_id=uuid.UUID(sender_id),
            read_by=[],
        )
        self.db.add(notification)
        await self.db.commit()
        logger.info(
            "notification.created",
            notification_id=str(notification.id),
            routes=[str(r) for r in targets.route_ids],
        )
        return notification, targets.route_ids

    # ─── Admin send (durable fan-out) ───────────────────

    async def fan_out(
        self,
        *,
        admin_id: str,
        admin_name: Optional[str] = None,
        target_type: str,
        related_route: Optional[str] = None,
        related_bus: Optional[str] = None,
        title: str,
        message: str,
        notification_type: str = "general",
        priority: str = "medium",
    ) -> FanOutResult:
        """Persist inbox rows for every subscriber, one shared record, then broadcast."""
        targets = await self.resolve_targets(target_type, related_route, related_bus)
        if not targets.route_ids:
            if target_type == "all":
                raise NoTargetsFoundError("No routes found to broadcast to")
            raise NoTargetsFoundError()

        result = await self.db.execute(
            select(User).where(User.selected_route_id.in_(targets.route_ids))
        )
        users = list(result.scalars().all())
        if not users:
            raise NoRecipientsFoundError()

        sender_id = uuid.UUID(admin_id)
        copies = [
            UserNotification(
                user_id=user.id,
                title=title,
                message=message,
                related_route_id=user.selected_route_id,
                related_bus_id=user.assigned_bus_id or targets.bus_id,
                notification_type=notification_type,
                priority=priority,
                sent_by_id=sender_id,
                is_read=False,
                read_at=None,
            )
            for user in users
        ]
        self.db.add_all(copies)

        notification = Notification(
            title=title,
            message=message,
            related_route_id=targets.fallback_route_id,
            related_bus_id=targets.bus_id,
            notification_type=notification_type,
            priority=priority,
            sent_by_id=sender_id,
            read_by=[],
        )
        self.db.add(notification)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("fanout.persist_failed", recipients=len(users))
            raise

        logger.info(
            "fanout.persisted",
            notification_id=str(notification.id),
            routes=len(targets.route_ids),
            recipients=len(users),
        )

        fan = FanOutResult(
            notification=notification,
            route_ids=targets.route_ids,
            total_users=len(users),
            copies_created=len(copies),
        )

        if self.broadcaster is not None:
            try:
                fan.delivered = await self.broadcaster.broadcast(
                    [str(r) for r in targets.route_ids],
                    build_notification_message(notification, sender_name=admin_name),
                )
            except Exception:
                # Durable write already committed; live delivery is best-effort.
                logger.exception(
                    "fanout.broadcast_failed",
                    notification_id=str(notification.id),
                )

        logger.info(
            "fanout.completed",
            notification_id=str(notification.id),
            recipients=fan.total_users,
            delivered=fan.delivered,
        )
        return fan

    # ─── Read receipts ──────────────────────────────────

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """Consume an inbox row, or ack the shared record.

        Returns True when an inbox row was deleted, False when the shared
        record's read_by was used instead.
        """
        nid = as_uuid(notification_id, NotificationNotFoundError)
        uid = uuid.UUID(user_id)

        result = await self.db.execute(
            delete(UserNotification).where(
                UserNotification.id == nid, UserNotification.user_id == uid
            )
        )
        if result.rowcount:
            await self.db.commit()
            return True

        notification = await self.db.get(Notification, nid)
        if not notification:
            raise NotificationNotFoundError()
        if user_id not in notification.read_by:
            # Reassign so the JSON column is flagged dirty.
            notification.read_by = [*notification.read_by, user_id]
        await self.db.commit()
        return False

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.db.execute(
            delete(UserNotification).where(UserNotification.user_id == uuid.UUID(user_id))
        )
        await self.db.commit()
        return result.rowcount or 0

    # ─── Listing ────────────────────────────────────────

    async def inbox(self, user_id: str) -> list[UserNotification]:
        """Unread inbox rows for the user's currently selected route."""
        user = await self.db.get(User, uuid.UUID(user_id))
        if not user or not user.selected_route_id:
            return []
        result = await self.db.execute(
            select(UserNotification)
            .where(
                UserNotification.user_id == user.id,
                UserNotification.related_route_id == user.selected_route_id,
            )
            .order_by(UserNotification.created_at.desc())
        )
        return list(result.scalars().all())

    async def unread_count(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(UserNotification.id)).where(
                UserNotification.user_id == uuid.UUID(user_id)
            )
        )
        return result.scalar_one()

    async def list_targets(self) -> list[dict]:
        """Routes that currently have at least one subscribed user."""
        q = (
            select(
                Route.id,
                Route.route_name,
                Route.assigned_bus_id,
                Bus.bus_number,
                func.count(User.id).label("user_count"),
            )
            .join(User, User.selected_route_id == Route.id)
            .outerjoin(Bus, Bus.id == Route.assigned_bus_id)
            .group_by(Route.id, Route.route_name, Route.assigned_bus_id, Bus.bus_number)
            .order_by(Route.route_name)
        )
        result = await self.db.execute(q)
        return [
            {
                "id": row.id,
                "route_name": row.route_name,
                "assigned_bus_id": row.assigned_bus_id,
                "bus_number": row.bus_number,
                "user_count": row.user_count,
            }
            for row in result.all()
        ]
