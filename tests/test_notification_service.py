"""NotificationService tests — target resolution, durable fan-out, inbox."""

import uuid

import pytest
from sqlalchemy import func, select

from busnotify.db.models import Notification, User, UserNotification
from busnotify.errors import (
    InvalidTargetError,
    NoRecipientsFoundError,
    NoTargetsFoundError,
    NotificationNotFoundError,
    RouteNotFoundError,
)
from busnotify.services.notification_service import NotificationService


async def _count(db, model) -> int:
    return await db.scalar(select(func.count(model.id)))


async def _fan_out(svc, fleet, **kwargs):
    params = dict(
        admin_id=fleet.admin,
        admin_name="Ada Admin",
        title="Delay",
        message="15 min late",
    )
    params.update(kwargs)
    return await svc.fan_out(**params)


# ─── Target resolution ──────────────────────────────────


async def test_resolve_all_routes(session_factory, fleet):
    async with session_factory() as db:
        targets = await NotificationService(db).resolve_targets("all")
    assert sorted(str(r) for r in targets.route_ids) == sorted(fleet.routes)


async def test_resolve_route_defaults_bus(session_factory, fleet):
    async with session_factory() as db:
        targets = await NotificationService(db).resolve_targets("route", fleet.route)
    assert [str(r) for r in targets.route_ids] == [fleet.route]
    assert str(targets.bus_id) == fleet.bus


async def test_resolve_bus_routes(session_factory, fleet):
    async with session_factory() as db:
        targets = await NotificationService(db).resolve_targets("bus", None, fleet.other_bus)
    assert [str(r) for r in targets.route_ids] == [fleet.other_route]


async def test_resolve_missing_route(session_factory, fleet):
    async with session_factory() as db:
        with pytest.raises(RouteNotFoundError):
            await NotificationService(db).resolve_targets("route", str(uuid.uuid4()))


async def test_resolve_without_target(session_factory, fleet):
    async with session_factory() as db:
        with pytest.raises(InvalidTargetError):
            await NotificationService(db).resolve_targets("route")


# ─── Durable fan-out ────────────────────────────────────


async def test_fan_out_all_routes(session_factory, fleet, realtime):
    """3 routes, 5 routed students: 5 inbox rows, 1 shared record, live to everyone."""
    connections = {}
    for route_id, students in fleet.students.items():
        for student in students:
            cid = f"c-{student}"
            await realtime.connect(cid, student)
            connections[cid] = route_id
    await realtime.connect("unrouted", fleet.unrouted_student)

    async with session_factory() as db:
        result = await _fan_out(
            NotificationService(db, realtime.broadcaster), fleet, target_type="all"
        )

    assert result.total_users == 5
    assert result.copies_created == 5
    assert result.delivered == 5
    assert realtime.emitter.recipients("notification") == set(connections)

    async with session_factory() as db:
        assert await _count(db, UserNotification) == 5
        assert await _count(db, Notification) == 1
        record = await db.get(Notification, result.notification.id)
        assert str(record.related_route_id) in fleet.routes


async def test_fan_out_route_creates_one_row_per_subscriber(session_factory, fleet):
    async with session_factory() as db:
        result = await _fan_out(
            NotificationService(db), fleet, target_type="route", related_route=fleet.route
        )
        subscribers = await db.scalar(
            select(func.count(User.id)).where(User.selected_route_id == uuid.UUID(fleet.route))
        )

    assert result.copies_created == subscribers == 2
    async with session_factory() as db:
        rows = (await db.execute(select(UserNotification))).scalars().all()
    assert {str(r.user_id) for r in rows} == set(fleet.students[fleet.route])
    assert {str(r.related_route_id) for r in rows} == {fleet.route}
    assert {str(r.related_bus_id) for r in rows} == {fleet.bus}


async def test_fan_out_to_route_without_subscribers(session_factory, fleet):
    async with session_factory() as db:
        # Move everyone off other_route.
        for user in (await db.execute(select(User))).scalars():
            if str(user.selected_route_id) == fleet.other_route:
                user.selected_route_id = uuid.UUID(fleet.route)
        await db.commit()

    async with session_factory() as db:
        with pytest.raises(NoRecipientsFoundError):
            await _fan_out(
                NotificationService(db), fleet,
                target_type="route", related_route=fleet.other_route,
            )
        assert await _count(db, Notification) == 0


async def test_fan_out_bus_without_routes(session_factory, fleet):
    async with session_factory() as db:
        with pytest.raises(NoTargetsFoundError):
            await _fan_out(
                NotificationService(db), fleet, target_type="bus", related_bus=fleet.idle_bus
            )


async def test_broadcast_failure_keeps_durable_rows(session_factory, fleet, realtime, monkeypatch):
    async def broken(route_ids, message):
        raise RuntimeError("transport down")

    monkeypatch.setattr(realtime.broadcaster, "broadcast", broken)

    async with session_factory() as db:
        result = await _fan_out(
            NotificationService(db, realtime.broadcaster), fleet, target_type="all"
        )

    assert result.delivered == 0
    async with session_factory() as db:
        assert await _count(db, UserNotification) == 5
        assert await _count(db, Notification) == 1


async def test_store_failure_aborts_fan_out(session_factory, fleet, realtime, monkeypatch):
    """A failed durable write leaves no rows and sends nothing live."""
    from sqlalchemy.ext.asyncio import AsyncSession

    async def flush_then_fail(self):
        await self.flush()
        raise RuntimeError("disk full")

    await realtime.connect("s1", fleet.students[fleet.route][0])
    monkeypatch.setattr(AsyncSession, "commit", flush_then_fail)

    async with session_factory() as db:
        with pytest.raises(RuntimeError):
            await _fan_out(
                NotificationService(db, realtime.broadcaster), fleet, target_type="all"
            )

    monkeypatch.undo()
    assert realtime.emitter.sent == []
    async with session_factory() as db:
        assert await _count(db, UserNotification) == 0
        assert await _count(db, Notification) == 0


# ─── Inbox ──────────────────────────────────────────────


async def test_inbox_is_scoped_to_selected_route(session_factory, fleet):
    student = fleet.students[fleet.route][0]
    async with session_factory() as db:
        svc = NotificationService(db)
        await _fan_out(svc, fleet, target_type="route", related_route=fleet.route)
        inbox = await svc.inbox(student)
        assert len(inbox) == 1
        assert await svc.unread_count(student) == 1

        # After switching routes the old route's rows no longer show.
        user = await db.get(User, uuid.UUID(student))
        user.selected_route_id = uuid.UUID(fleet.other_route)
        await db.commit()
        assert await svc.inbox(student) == []


async def test_mark_read_decrements_unread_once(session_factory, fleet):
    student = fleet.students[fleet.route][0]
    async with session_factory() as db:
        svc = NotificationService(db)
        await _fan_out(svc, fleet, target_type="route", related_route=fleet.route)
        [row] = await svc.inbox(student)

        assert await svc.mark_read(student, str(row.id)) is True
        assert await svc.unread_count(student) == 0
        with pytest.raises(NotificationNotFoundError):
            await svc.mark_read(student, str(row.id))


async def test_mark_all_read(session_factory, fleet):
    student = fleet.students[fleet.route][0]
    async with session_factory() as db:
        svc = NotificationService(db)
        await _fan_out(svc, fleet, target_type="route", related_route=fleet.route)
        await _fan_out(svc, fleet, target_type="all", title="Snow day")

        assert await svc.mark_all_read(student) == 2
        assert await svc.unread_count(student) == 0


async def test_list_targets_counts_subscribers(session_factory, fleet):
    async with session_factory() as db:
        targets = await NotificationService(db).list_targets()

    by_name = {t["route_name"]: t for t in targets}
    assert by_name["Alpha"]["user_count"] == 2
    assert by_name["Alpha"]["bus_number"] == "B-1"
    assert by_name["Bravo"]["user_count"] == 1
    assert by_name["Charlie"]["user_count"] == 2
    assert by_name["Charlie"]["bus_number"] is None
