"""Broadcast engine tests — delivery counts, isolation and ordering."""

import uuid

from busnotify.events.types import OutboundEvent
from busnotify.schemas.realtime import DriverUpdatesClear, SocketError


def _clear(route_id: uuid.UUID) -> DriverUpdatesClear:
    return DriverUpdatesClear(route_id=route_id, bus_id=uuid.uuid4())


async def test_broadcast_reaches_only_route_members(realtime):
    registry, emitter, engine = realtime.registry, realtime.emitter, realtime.broadcaster
    r1, r2 = uuid.uuid4(), uuid.uuid4()
    registry.join(str(r1), "u1", "c1")
    registry.join(str(r1), "u2", "c2")
    registry.join(str(r2), "u3", "c3")

    delivered = await engine.broadcast([str(r1)], _clear(r1))

    assert delivered == 2
    assert emitter.recipients("driverUpdatesClear") == {"c1", "c2"}


async def test_broadcast_payload_is_camel_case(realtime):
    registry, emitter, engine = realtime.registry, realtime.emitter, realtime.broadcaster
    r1 = uuid.uuid4()
    registry.join(str(r1), "u1", "c1")

    await engine.broadcast([str(r1)], _clear(r1))

    payload = emitter.to("c1", "driverUpdatesClear")[0]
    assert payload["routeId"] == str(r1)
    assert "busId" in payload


async def test_broadcast_to_empty_route_returns_zero(realtime):
    emitter, engine = realtime.emitter, realtime.broadcaster
    assert await engine.broadcast([str(uuid.uuid4())], _clear(uuid.uuid4())) == 0
    assert emitter.sent == []


async def test_failing_connection_is_skipped(realtime):
    registry, emitter, engine = realtime.registry, realtime.emitter, realtime.broadcaster
    r1 = uuid.uuid4()
    registry.join(str(r1), "u1", "c1")
    registry.join(str(r1), "u2", "c2")
    emitter.failing.add("c1")

    delivered = await engine.broadcast([str(r1)], _clear(r1))

    assert delivered == 1
    assert emitter.recipients("driverUpdatesClear") == {"c2"}


async def test_multi_route_broadcast_sends_once_per_connection(realtime):
    registry, emitter, engine = realtime.registry, realtime.emitter, realtime.broadcaster
    r1, r2 = uuid.uuid4(), uuid.uuid4()
    registry.join(str(r1), "u1", "c1")
    registry.join(str(r2), "u2", "c2")

    delivered = await engine.broadcast([str(r1), str(r2), str(r1)], _clear(r1))

    assert delivered == 2
    assert len(emitter.sent) == 2


async def test_messages_arrive_in_broadcast_order(realtime):
    registry, emitter, engine = realtime.registry, realtime.emitter, realtime.broadcaster
    r1 = uuid.uuid4()
    registry.join(str(r1), "u1", "c1")
    first, second = uuid.uuid4(), uuid.uuid4()

    await engine.broadcast([str(r1)], DriverUpdatesClear(route_id=r1, bus_id=first))
    await engine.broadcast([str(r1)], DriverUpdatesClear(route_id=r1, bus_id=second))

    assert [p["busId"] for p in emitter.to("c1")] == [str(first), str(second)]


async def test_broadcast_is_published_on_event_bus(realtime):
    registry, engine = realtime.registry, realtime.broadcaster
    r1 = uuid.uuid4()
    registry.join(str(r1), "u1", "c1")
    seen = []

    async def handler(envelope):
        seen.append(envelope)

    engine.bus.subscribe(handler, OutboundEvent.DRIVER_UPDATES_CLEAR)
    await engine.broadcast([str(r1)], _clear(r1))

    assert len(seen) == 1
    assert seen[0].route_ids == (str(r1),)
    assert seen[0].delivered == 1


async def test_send_to_targets_one_connection(realtime):
    registry, emitter, engine = realtime.registry, realtime.emitter, realtime.broadcaster
    registry.join("r1", "u1", "c1")
    registry.join("r1", "u2", "c2")

    await engine.send_to("c2", SocketError(error="nope"))

    assert emitter.sent == [("socketError", {"error": "nope"}, "c2")]
