"""Presence API tests."""

import pytest


@pytest.mark.asyncio
async def test_route_members(client, fleet, headers, realtime):
    s1, s2 = fleet.students[fleet.route]
    await realtime.connect("tab-a", s1)
    await realtime.connect("tab-b", s1)
    await realtime.connect("c2", s2)

    r = await client.get(
        f"/api/v1/realtime/routes/{fleet.route}/members", headers=headers["admin"]
    )
    assert r.status_code == 200
    data = r.json()
    assert data["routeId"] == fleet.route
    assert data["memberCount"] == 2
    assert data["connectionCount"] == 3
    assert data["userIds"] == sorted([s1, s2])


@pytest.mark.asyncio
async def test_route_members_after_disconnect(client, fleet, headers, realtime):
    student = fleet.students[fleet.other_route][0]
    await realtime.connect("c1", student)
    await realtime.router.disconnect("c1")

    r = await client.get(
        f"/api/v1/realtime/routes/{fleet.other_route}/members", headers=headers["admin"]
    )
    assert r.json()["memberCount"] == 0

    r = await client.get("/api/v1/realtime/routes", headers=headers["admin"])
    assert fleet.other_route not in r.json()


@pytest.mark.asyncio
async def test_presence_is_admin_only(client, fleet, headers):
    r = await client.get(
        f"/api/v1/realtime/routes/{fleet.route}/members", headers=headers["student"]
    )
    assert r.status_code == 403
