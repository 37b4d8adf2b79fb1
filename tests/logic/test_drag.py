from unittest.mock import MagicMock

import pytest

from conftest import make_entry, utc
from timeline_engine.logic.drag import (
    DragInteractionController,
    DragPhase,
    DragType,
    LockedBoundary,
    PointerKind,
    SnapCard,
    SnapRelease,
    SnapTarget,
    detach_threshold,
    detect_snap_release,
    linked_edge_allowed,
    snap_to_grid,
)
from timeline_engine.models import LinkedType

PPH = 60  # one pixel per minute keeps the arithmetic readable


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def commits():
    return []


@pytest.fixture
def controller(notifier, settings, clock, commits):
    return DragInteractionController(
        PPH, 3, on_commit=commits.append, notifier=notifier, settings=settings, clock=clock
    )


@pytest.fixture
def e1():
    return make_entry("E1", utc(1, 9), utc(1, 10))


def drag(controller, entry, drag_type, start, end, dy, dx=0.0):
    assert controller.press(entry, drag_type, start, end, x=100, y=100)
    controller.pointer_move(100 + dx, 100 + dy)
    return controller.release()


def test_move_by_one_hour(controller, e1, commits):
    commit = drag(controller, e1, DragType.move, 9.0, 10.0, dy=60)

    assert (commit.start_gh, commit.end_gh) == (10.0, 11.0)
    assert commit.drag_type == DragType.move
    assert commits == [commit]
    assert not controller.is_active


def test_resize_bottom_snaps_to_grid(controller, e1):
    commit = drag(controller, e1, DragType.resize_bottom, 9.0, 10.0, dy=8)
    assert (commit.start_gh, commit.end_gh) == (9.0, 10.25)


def test_resize_that_snaps_back_commits_nothing(controller, e1, commits):
    assert drag(controller, e1, DragType.resize_bottom, 9.0, 10.0, dy=7) is None
    assert commits == []


def test_resize_bottom_respects_minimum_duration(controller, e1):
    controller.press(e1, DragType.resize_bottom, 9.0, 10.0, x=100, y=100)
    state = controller.pointer_move(100, -20)

    assert state.clamped
    assert (state.current_start, state.current_end) == (9.0, 9.25)
    commit = controller.release()
    assert commit.end_gh - commit.start_gh == 0.25


def test_resize_top_respects_minimum_duration(controller, e1):
    controller.press(e1, DragType.resize_top, 9.0, 10.0, x=100, y=100)
    state = controller.pointer_move(100, 300)
    assert state.clamped
    assert (state.current_start, state.current_end) == (9.75, 10.0)


def test_move_is_clamped_to_trip_range(controller, e1):
    commit = drag(controller, e1, DragType.move, 9.0, 10.0, dy=-600)
    assert (commit.start_gh, commit.end_gh) == (0.0, 1.0)

    late = make_entry("late", utc(3, 22), utc(3, 23))
    commit = drag(controller, late, DragType.move, 70.0, 71.0, dy=300)
    assert (commit.start_gh, commit.end_gh) == (71.0, 72.0)


def test_small_movement_is_a_click(controller, e1, clock):
    assert drag(controller, e1, DragType.move, 9.0, 10.0, dy=3) is None
    assert not controller.suppress_click()


def test_locked_entry_is_rejected(controller, notifier):
    locked = make_entry("museum", utc(1, 9), utc(1, 10), name="Museum", is_locked=True)
    assert not controller.press(locked, DragType.move, 9.0, 10.0, x=0, y=0)
    notifier.locked_rejected.assert_called_once_with("museum", "Museum")
    assert not controller.is_busy


def test_flights_and_linked_moves_are_rejected(controller, notifier, flight_group_entries):
    checkin, flight, _ = flight_group_entries
    assert not controller.press(flight, DragType.move, 34.0, 38.0, x=0, y=0)
    assert not controller.press(flight, DragType.resize_bottom, 34.0, 38.0, x=0, y=0)
    assert not controller.press(checkin, DragType.move, 32.0, 34.0, x=0, y=0)
    notifier.locked_rejected.assert_not_called()

    # A check-in can still be stretched
    assert controller.press(checkin, DragType.resize_top, 32.0, 34.0, x=0, y=0)


def test_linked_entries_only_stretch_away_from_the_flight(controller, commits, flight_group_entries):
    checkin, _, checkout = flight_group_entries
    assert not controller.press(checkin, DragType.resize_bottom, 32.0, 34.0, x=0, y=0)
    assert not controller.press(checkout, DragType.resize_top, 38.0, 38.5, x=0, y=0)
    assert not controller.press(checkout, DragType.move, 38.0, 38.5, x=0, y=0)

    commit = drag(controller, checkin, DragType.resize_top, 32.0, 34.0, dy=-30)
    assert (commit.start_gh, commit.end_gh) == (31.5, 34.0)
    commit = drag(controller, checkout, DragType.resize_bottom, 38.0, 38.5, dy=15)
    assert (commit.start_gh, commit.end_gh) == (38.0, 38.75)
    assert len(commits) == 2


@pytest.mark.parametrize("linked_type,drag_type,allowed", [
    (LinkedType.checkin, DragType.resize_top, True),
    (LinkedType.checkin, DragType.resize_bottom, False),
    (LinkedType.checkin, DragType.move, False),
    (LinkedType.checkout, DragType.resize_bottom, True),
    (LinkedType.checkout, DragType.resize_top, False),
    (LinkedType.checkout, DragType.move, False),
    (LinkedType.none, DragType.move, True),
])
def test_linked_edge_allowed(linked_type, drag_type, allowed):
    assert linked_edge_allowed(linked_type, drag_type) is allowed


def test_second_press_is_ignored_while_dragging(controller, e1):
    other = make_entry("other", utc(1, 12), utc(1, 13))
    assert controller.press(e1, DragType.move, 9.0, 10.0, x=0, y=0)
    assert not controller.press(other, DragType.move, 12.0, 13.0, x=0, y=0)
    assert controller.state.entry_id == "E1"


def test_touch_hold_starts_drag(controller, e1, clock):
    assert controller.press(e1, DragType.move, 9.0, 10.0, x=100, y=100, pointer=PointerKind.touch)
    assert controller.pending is not None and not controller.is_active

    clock.now = 0.1
    assert controller.pointer_move(100, 103) is None
    assert not controller.poll()

    clock.now = 0.2
    assert controller.poll()
    assert controller.is_active and controller.state.pointer == PointerKind.touch

    controller.pointer_move(100, 160)
    commit = controller.release()
    assert (commit.start_gh, commit.end_gh) == (10.0, 11.0)


def test_touch_movement_before_hold_cancels(controller, e1, commits, clock):
    controller.press(e1, DragType.move, 9.0, 10.0, x=100, y=100, pointer=PointerKind.touch)
    clock.now = 0.05
    assert controller.pointer_move(100, 120) is None
    assert not controller.is_busy

    clock.now = 0.5
    assert not controller.poll()
    assert controller.release() is None
    assert commits == []


def test_touch_tap_commits_nothing(controller, e1):
    controller.press(e1, DragType.move, 9.0, 10.0, x=100, y=100, pointer=PointerKind.touch)
    assert controller.release() is None
    assert not controller.is_busy


def test_click_guard_after_drag(controller, e1, clock):
    clock.now = 1.0
    drag(controller, e1, DragType.move, 9.0, 10.0, dy=60)
    assert controller.suppress_click(1.1)
    assert not controller.suppress_click(1.2)


def test_horizontal_drag_detaches(controller, e1):
    assert detach_threshold(1280) == pytest.approx(51.2)
    assert detach_threshold(400) == 16.0
    assert detach_threshold(200) == 15.0

    commit = drag(controller, e1, DragType.move, 9.0, 10.0, dy=60, dx=80)
    assert commit.phase == DragPhase.detached


def test_move_snaps_to_transport_end(notifier, settings, e1):
    controller = DragInteractionController(
        PPH, 3, notifier=notifier, settings=settings, snap_targets=[SnapTarget(10.1, "walk")]
    )
    controller.press(e1, DragType.move, 9.0, 10.0, x=0, y=0)
    state = controller.pointer_move(0, 60)
    assert state.snapped_to_target
    assert state.current_start == 10.1
    assert state.current_end == pytest.approx(11.1)


def test_move_stops_at_locked_card(notifier, settings, e1):
    controller = DragInteractionController(
        PPH, 3, notifier=notifier, settings=settings,
        locked_boundaries=[LockedBoundary("museum", 11.0, 12.0), LockedBoundary("E1", 9.0, 10.0)],
    )
    controller.press(e1, DragType.move, 9.0, 10.0, x=0, y=0)
    state = controller.pointer_move(0, 90)
    assert state.hit_wall
    assert (state.current_start, state.current_end) == (10.0, 11.0)

    state = controller.pointer_move(0, 150)
    # Still overlapping from above: parked against its top
    assert (state.current_start, state.current_end) == (10.0, 11.0)


def test_wall_never_pushes_a_move_outside_the_trip(notifier, settings):
    early = make_entry("early", utc(1, 0), utc(1, 1))
    controller = DragInteractionController(
        PPH, 3, notifier=notifier, settings=settings, locked_boundaries=[LockedBoundary("w", 0.5, 2.0)],
    )
    controller.press(early, DragType.move, 0.0, 1.0, x=0, y=0)
    state = controller.pointer_move(0, 15)

    assert state.hit_wall and state.clamped
    assert (state.current_start, state.current_end) == (0.0, 1.0)
    assert controller.release() is None

    late = make_entry("late", utc(3, 23), utc(4, 0))
    controller = DragInteractionController(
        PPH, 3, notifier=notifier, settings=settings, locked_boundaries=[LockedBoundary("w", 70.5, 71.75)],
    )
    controller.press(late, DragType.move, 71.0, 72.0, x=0, y=0)
    state = controller.pointer_move(0, -30)
    assert 0.0 <= state.current_start and state.current_end <= 72.0
    assert (state.current_start, state.current_end) == (71.0, 72.0)


def test_release_near_card_lands_flush(notifier, settings, e1):
    controller = DragInteractionController(
        PPH, 3, notifier=notifier, settings=settings,
        snap_cards=[SnapCard("lunch", 12.0, 13.0), SnapCard("E1", 9.0, 10.0)],
    )
    controller.press(e1, DragType.move, 9.0, 10.0, x=0, y=0)
    controller.pointer_move(0, 255)
    commit = controller.release()

    assert commit.snap_release == SnapRelease("lunch", "below", 13.0)
    assert (commit.start_gh, commit.end_gh) == (13.0, 14.0)


def test_detect_snap_release_skips_transfers_and_self():
    cards = [SnapCard("walk", 12.0, 12.5, is_transfer=True), SnapCard("me", 9.0, 10.0)]
    assert detect_snap_release(12.6, 13.6, cards, exclude_ids=("me",)) is None

    above = detect_snap_release(8.0, 8.9, [SnapCard("lunch", 9.0, 10.0)])
    assert above.side == "above"
    assert above.snap_start_hour == pytest.approx(8.1)


@pytest.mark.parametrize("hour,expected", [
    (9.0, 9.0),
    (9.1, 9.0),
    (9.125, 9.25),
    (9.2, 9.25),
    (23.9, 24.0),
])
def test_snap_to_grid(hour, expected):
    assert snap_to_grid(hour, 15) == expected


def test_cancel_clears_everything(controller, e1, commits):
    controller.press(e1, DragType.move, 9.0, 10.0, x=0, y=0)
    controller.pointer_move(0, 60)
    controller.cancel()
    assert controller.release() is None
    assert commits == []


def test_rejects_bad_scale():
    with pytest.raises(ValueError):
        DragInteractionController(0, 3, on_commit=MagicMock())


@pytest.mark.parametrize("drag_type", [DragType.move, DragType.resize_top, DragType.resize_bottom])
@pytest.mark.parametrize("dy", [-517, -61, 13, 29, 44, 233, 1999])
def test_commits_stay_on_grid_and_keep_minimum(controller, e1, drag_type, dy):
    commit = drag(controller, e1, drag_type, 9.0, 10.0, dy=dy)
    if commit is None:
        return
    assert round(commit.start_gh * 60) % 15 == 0
    assert round(commit.end_gh * 60) % 15 == 0
    assert commit.end_gh - commit.start_gh >= 0.25
    if drag_type == DragType.move:
        assert commit.end_gh - commit.start_gh == pytest.approx(1.0)
