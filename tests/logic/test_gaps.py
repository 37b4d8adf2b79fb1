from unittest.mock import MagicMock

import pytest

from conftest import make_entry, make_mapper, utc
from timeline_engine.collaborators.routing import RouteResult
from timeline_engine.errors import LockedEntryViolation, RoutingUnavailable
from timeline_engine.logic.gaps import (
    GapSnapAdvisor,
    GapTier,
    plan_snap,
    plan_transport_recalc,
    plan_transport_resize,
    routed_minutes,
)


def walk(start, end, **kwargs):
    return make_entry("walk", start, end, name="Walk to Museum", category="transfer",
                      from_entry_id="hotel", to_entry_id="museum",
                      departure_location="1 Hotel St", arrival_location="2 Museum Rd", **kwargs)


def museum(start, end, **kwargs):
    return make_entry("museum", start, end, name="Museum", **kwargs)


def classify(trip, prev, nxt, between=()):
    advisor = GapSnapAdvisor(make_mapper(trip, [prev, nxt, *between]))
    return advisor.classify(prev, nxt, between=between)


@pytest.fixture
def routing():
    client = MagicMock()
    client.get_route.return_value = [
        RouteResult(mode="walk", duration_min=22.4),
        RouteResult(mode="transit", duration_min=11),
    ]
    return client


def test_small_gap_is_contiguous(trip):
    a = make_entry("a", utc(1, 9), utc(1, 10))
    b = make_entry("b", utc(1, 10, 5), utc(1, 11))
    advice = classify(trip, a, b)
    assert advice.tier == GapTier.contiguous
    assert advice.gap_minutes == 5


def test_short_gap_after_transport_auto_snaps(trip):
    advice = classify(trip, walk(utc(1, 11, 30), utc(1, 12)), museum(utc(1, 12, 20), utc(1, 13)))
    assert advice.tier == GapTier.auto_snap
    assert not advice.offer_snap


def test_medium_gap_after_transport_offers_centered_snap(trip):
    advice = classify(trip, walk(utc(1, 11, 30), utc(1, 12)), museum(utc(1, 13), utc(1, 14)))
    assert advice.tier == GapTier.snap
    assert advice.offer_snap
    assert advice.snap_position == "center"


def test_long_gap_after_transport_splits(trip):
    advice = classify(trip, walk(utc(1, 11, 30), utc(1, 12)), museum(utc(1, 14), utc(1, 15)))
    assert advice.tier == GapTier.snap_split
    assert advice.offer_snap and advice.offer_add
    assert advice.snap_position == "near_transport"


def test_locked_target_disables_snap(trip):
    advice = classify(trip, walk(utc(1, 11, 30), utc(1, 12)),
                      museum(utc(1, 12, 20), utc(1, 13), is_locked=True))
    assert advice.tier == GapTier.snap
    assert not advice.offer_snap
    assert advice.locked_reason == "Museum is locked"


def test_gap_before_transport_belongs_to_it(trip):
    hotel = make_entry("hotel", utc(1, 9), utc(1, 10))
    advice = classify(trip, hotel, walk(utc(1, 11), utc(1, 11, 30)))
    assert advice.tier == GapTier.none


def test_gap_between_events(trip):
    a = make_entry("a", utc(1, 9), utc(1, 10))
    assert classify(trip, a, make_entry("b", utc(1, 11), utc(1, 12))).offer_transport_shortcut

    advice = classify(trip, a, make_entry("c", utc(1, 17), utc(1, 18)))
    assert advice.tier == GapTier.open
    assert advice.offer_add and advice.split_add

    advice = classify(trip, a, make_entry("d", utc(1, 13), utc(1, 14)))
    assert advice.tier == GapTier.open and not advice.split_add


def test_transport_in_between_bridges_gap(trip):
    a = make_entry("a", utc(1, 9), utc(1, 10))
    b = make_entry("b", utc(1, 11), utc(1, 12))
    advice = classify(trip, a, b, between=[walk(utc(1, 10), utc(1, 10, 30))])
    assert advice.tier == GapTier.bridged


def test_advise_all_walks_neighbours(trip):
    hotel = make_entry("hotel", utc(1, 10), utc(1, 11, 30))
    entries = [museum(utc(1, 12, 20), utc(1, 13)), hotel, walk(utc(1, 11, 30), utc(1, 12))]
    advice = GapSnapAdvisor(make_mapper(trip, entries)).advise_all(entries)
    assert [(a.prev_id, a.next_id, a.tier) for a in advice] == [
        ("hotel", "walk", GapTier.contiguous),
        ("walk", "museum", GapTier.auto_snap),
    ]


def test_routed_minutes(routing, settings):
    assert routed_minutes(routing, "a", "b", utc(1, 9), settings=settings) == 15
    assert routed_minutes(routing, "a", "b", utc(1, 9), mode="walk", settings=settings) == 25
    assert routed_minutes(routing, "a", "b", utc(1, 9), mode="ferry", settings=settings) == 25
    assert routed_minutes(None, "a", "b", utc(1, 9)) is None
    assert routed_minutes(routing, None, "b", utc(1, 9)) is None


def test_routed_minutes_survives_routing_failure(routing):
    routing.get_route.side_effect = RoutingUnavailable("down")
    assert routed_minutes(routing, "a", "b", utc(1, 9)) is None


def test_snap_resizes_transport_then_moves_target(routing, settings):
    transport = walk(utc(1, 11, 30), utc(1, 12))
    target = museum(utc(1, 13), utc(1, 14))
    plan = plan_snap(transport, target, routing, mode="walk", settings=settings)

    assert plan.change_for("walk").new_end == utc(1, 11, 55)
    change = plan.change_for("museum")
    assert (change.new_start, change.new_end) == (utc(1, 11, 55), utc(1, 12, 55))


def test_snap_without_routing_keeps_transport(settings):
    plan = plan_snap(walk(utc(1, 11, 30), utc(1, 12)), museum(utc(1, 13), utc(1, 14)), settings=settings)
    assert plan.entry_ids == ["museum"]
    assert plan.change_for("museum").new_start == utc(1, 12)


def test_snap_onto_locked_target_raises(routing):
    with pytest.raises(LockedEntryViolation):
        plan_snap(walk(utc(1, 11, 30), utc(1, 12)), museum(utc(1, 13), utc(1, 14), is_locked=True), routing)


@pytest.fixture
def afternoon():
    return [
        walk(utc(1, 11, 30), utc(1, 12)),
        museum(utc(1, 12), utc(1, 13)),
        make_entry("lunch", utc(1, 13), utc(1, 14)),
        make_entry("show", utc(1, 19), utc(1, 21)),
    ]


def test_growing_transport_pushes_its_block(afternoon, settings):
    plan = plan_transport_resize(afternoon, "walk", 48, settings)
    assert {c.entry_id: (c.new_start, c.new_end) for c in plan.changes} == {
        "walk": (utc(1, 11, 30), utc(1, 12, 20)),
        "museum": (utc(1, 12, 20), utc(1, 13, 20)),
        "lunch": (utc(1, 13, 20), utc(1, 14, 20)),
    }


def test_block_expansion_stops_at_locked_entry(afternoon, settings):
    afternoon[2] = afternoon[2].model_copy(update={"is_locked": True})
    plan = plan_transport_resize(afternoon, "walk", 50, settings)
    assert plan.entry_ids == ["walk", "museum"]
    assert [(s.entry_id, s.reason) for s in plan.skipped] == [("lunch", "locked")]


def test_shrinking_transport_leaves_block(afternoon, settings):
    plan = plan_transport_resize(afternoon, "walk", 20, settings)
    assert plan.entry_ids == ["walk"]
    assert plan.change_for("walk").new_end == utc(1, 11, 50)


def test_recalc_uses_routing(afternoon, routing, settings):
    plan = plan_transport_recalc(afternoon, ["walk", "museum"], routing, mode="walk", settings=settings)
    # Shrunk to the routed 25 min; the museum is not a transport and stays put
    assert plan.entry_ids == ["walk"]
    assert plan.change_for("walk").new_end == utc(1, 11, 55)
    assert [(s.entry_id, s.reason) for s in plan.skipped] == [("museum", "missing")]


def test_recalc_skips_failed_routes(afternoon, routing, settings):
    routing.get_route.side_effect = RoutingUnavailable("down")
    plan = plan_transport_recalc(afternoon, ["walk"], routing, settings=settings)
    assert plan.changes == []
    assert [(s.entry_id, s.reason) for s in plan.skipped] == [("walk", "routing unavailable")]
