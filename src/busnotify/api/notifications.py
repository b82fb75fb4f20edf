"""Notification API routes — admin fan-out, inbox and read receipts.

Learn: Routes handle HTTP concerns only. NotificationService raises
named errors (BusNotifyError subclasses) and each route maps them to an
HTTPException with the error's status and client-safe message.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from busnotify.api.deps import get_broadcaster
from busnotify.auth.dependencies import CurrentIdentity, get_current_user, require_admin
from busnotify.db.engine import get_db
from busnotify.errors import BusNotifyError
from busnotify.realtime.broadcast import BroadcastEngine
from busnotify.schemas.notification import (
    AdminSendRequest,
    AdminSendResponse,
    InboxItemRead,
    MarkAllReadResponse,
    MarkReadResponse,
    NotificationTargetRead,
)
from busnotify.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications")


def _svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: BroadcastEngine = Depends(get_broadcaster),
) -> NotificationService:
    return NotificationService(db, broadcaster)


def _http_error(e: BusNotifyError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# ─── Admin ──────────────────────────────────────────────


@router.post("/admin/send", response_model=AdminSendResponse, status_code=201)
async def admin_send(
    body: AdminSendRequest,
    admin: CurrentIdentity = Depends(require_admin),
    svc: NotificationService = Depends(_svc),
):
    """Write an inbox row for every subscriber of the target, then broadcast."""
    if body.target_type == "route" and not body.related_route:
        raise HTTPException(status_code=400, detail="Invalid route or bus selection")
    if body.target_type == "bus" and not body.related_bus:
        raise HTTPException(status_code=400, detail="Invalid route or bus selection")

    try:
        result = await svc.fan_out(
            admin_id=admin.user_id,
            admin_name=admin.name,
            target_type=body.target_type,
            related_route=body.related_route if body.target_type == "route" else None,
            related_bus=body.related_bus if body.target_type == "bus" else None,
            title=body.title,
            message=body.message,
            notification_type=body.notification_type,
            priority=body.priority,
        )
    except BusNotifyError as e:
        raise _http_error(e)

    return AdminSendResponse(
        message=f"Notification sent to {result.total_users} users",
        total_users=result.total_users,
        global_notification_id=result.notification.id,
        db_copies_created=result.copies_created,
    )


@router.get("/targets", response_model=list[NotificationTargetRead])
async def list_targets(
    _: CurrentIdentity = Depends(require_admin),
    svc: NotificationService = Depends(_svc),
):
    """Routes with at least one subscribed user."""
    return await svc.list_targets()


# ─── Inbox ──────────────────────────────────────────────


@router.get("/me", response_model=list[InboxItemRead])
async def my_notifications(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    return await svc.inbox(identity.user_id)


@router.patch("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    deleted = await svc.mark_all_read(identity.user_id)
    return MarkAllReadResponse(
        message="All notifications marked as read",
        deleted_count=deleted,
    )


@router.patch("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: str,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_svc),
):
    try:
        consumed = await svc.mark_read(identity.user_id, notification_id)
    except BusNotifyError as e:
        raise _http_error(e)
    return MarkReadResponse(notification_id=notification_id, consumed=consumed)
