"""Route membership registry tests — pure in-memory, no store."""

from busnotify.realtime.registry import JoinResult, Membership, RouteMembershipRegistry


def test_join_adds_member():
    reg = RouteMembershipRegistry()
    assert reg.join("r1", "u1", "c1") is JoinResult.JOINED
    assert reg.members_of("r1") == frozenset({"u1"})
    assert reg.route_of("c1") == "r1"
    assert reg.has_route("r1")


def test_join_twice_is_idempotent():
    reg = RouteMembershipRegistry()
    reg.join("r1", "u1", "c1")
    before = reg.snapshot()
    assert reg.join("r1", "u1", "c1") is JoinResult.ALREADY_JOINED
    assert reg.snapshot() == before
    assert reg.connections_for(["r1"]) == ["c1"]


def test_switching_routes_leaves_previous_route():
    """A connection holds at most one membership."""
    reg = RouteMembershipRegistry()
    reg.join("r1", "u1", "c1")
    assert reg.join("r2", "u1", "c1") is JoinResult.SWITCHED
    assert "u1" not in reg.members_of("r1")
    assert reg.members_of("r2") == frozenset({"u1"})
    # r1 emptied, so it is gone entirely
    assert not reg.has_route("r1")


def test_leave_removes_member_and_empty_route():
    reg = RouteMembershipRegistry()
    reg.join("r1", "u1", "c1")
    assert reg.leave("c1") == Membership(user_id="u1", route_id="r1")
    assert reg.members_of("r1") == frozenset()
    assert not reg.has_route("r1")
    assert reg.snapshot() == {}
    assert reg.connection_count == 0


def test_leave_unknown_connection_is_noop():
    reg = RouteMembershipRegistry()
    assert reg.leave("nope") is None


def test_user_with_two_tabs_stays_member_until_both_leave():
    reg = RouteMembershipRegistry()
    reg.join("r1", "u1", "tab-a")
    reg.join("r1", "u1", "tab-b")
    assert reg.member_count("r1") == 1
    assert sorted(reg.connections_for(["r1"])) == ["tab-a", "tab-b"]

    reg.leave("tab-a")
    assert reg.members_of("r1") == frozenset({"u1"})
    reg.leave("tab-b")
    assert not reg.has_route("r1")


def test_connections_for_several_routes_is_deduplicated():
    reg = RouteMembershipRegistry()
    reg.join("r1", "u1", "c1")
    reg.join("r2", "u2", "c2")
    reg.join("r2", "u3", "c3")
    conns = reg.connections_for(["r1", "r2", "r1", "missing"])
    assert sorted(conns) == ["c1", "c2", "c3"]
    assert len(conns) == 3


def test_snapshot_counts_users_per_route():
    reg = RouteMembershipRegistry()
    reg.join("r1", "u1", "c1")
    reg.join("r1", "u2", "c2")
    reg.join("r2", "u3", "c3")
    assert reg.snapshot() == {"r1": 2, "r2": 1}
    assert reg.connection_count == 3
