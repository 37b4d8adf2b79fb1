"""
Pointer and touch drag state machine for timeline cards.

idle -> (touch: pending hold) -> active(move | resize-top | resize-bottom) -> idle

The controller is fed raw pointer coordinates by the UI layer and works
entirely in global hours. It never touches entries or persistence: on release
it hands a single DragCommit to `on_commit` and the caller maps it back to UTC.
"""

import enum
import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Sequence

from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.models import Entry, LinkedType

log = logging.getLogger(__name__)


class DragType(str, enum.Enum):
    move = "move"
    resize_top = "resize-top"
    resize_bottom = "resize-bottom"


class PointerKind(str, enum.Enum):
    mouse = "mouse"
    touch = "touch"


class DragPhase(str, enum.Enum):
    timeline = "timeline"
    detached = "detached"


@dataclass(frozen=True)
class SnapTarget:
    global_hour: float
    label: str = ""


@dataclass(frozen=True)
class LockedBoundary:
    entry_id: str
    start_gh: float
    end_gh: float


@dataclass(frozen=True)
class SnapCard:
    """A card the dragged one may be released flush against."""
    entry_id: str
    start_gh: float
    end_gh: float
    is_transfer: bool = False


@dataclass(frozen=True)
class SnapRelease:
    entry_id: str
    side: str  # "below": dragged card goes after the target, "above": before it
    snap_start_hour: float


@dataclass
class DragState:
    entry_id: str
    drag_type: DragType
    pointer: PointerKind
    original_start: float
    original_end: float
    current_start: float
    current_end: float
    start_x: float
    start_y: float
    current_x: float
    current_y: float
    tz: Optional[str] = None
    was_dragged: bool = False
    clamped: bool = False
    snapped_to_target: bool = False
    hit_wall: bool = False
    phase: DragPhase = DragPhase.timeline
    snap_release: Optional[SnapRelease] = None

    @property
    def duration(self) -> float:
        return self.original_end - self.original_start

    @property
    def changed(self) -> bool:
        return self.current_start != self.original_start or self.current_end != self.original_end


@dataclass
class PendingTouch:
    entry_id: str
    drag_type: DragType
    start_gh: float
    end_gh: float
    x: float
    y: float
    pressed_at: float
    tz: Optional[str] = None
    cancelled: bool = False


@dataclass(frozen=True)
class DragCommit:
    entry_id: str
    start_gh: float
    end_gh: float
    drag_type: DragType
    client_x: float
    client_y: float
    tz: Optional[str] = None
    phase: DragPhase = DragPhase.timeline
    snap_release: Optional[SnapRelease] = None


def snap_to_grid(hour: float, snap_minutes: int) -> float:
    """Round to the nearest grid line; halves round up."""
    return math.floor(hour * 60 / snap_minutes + 0.5) * snap_minutes / 60


def detach_threshold(viewport_width: float, settings: Optional[Settings] = None) -> float:
    settings = settings or default_settings
    scaled = viewport_width * settings.DETACH_VIEWPORT_FRACTION
    if viewport_width < settings.DETACH_MOBILE_BREAKPOINT_PX:
        return max(settings.DETACH_MIN_MOBILE_PX, scaled)
    return max(settings.DETACH_MIN_DESKTOP_PX, scaled)


def linked_edge_allowed(linked_type: LinkedType, drag_type: DragType) -> bool:
    """A check-in only stretches at its top, a check-out only at its bottom; neither moves."""
    if linked_type == LinkedType.checkin:
        return drag_type == DragType.resize_top
    if linked_type == LinkedType.checkout:
        return drag_type == DragType.resize_bottom
    return True


def detect_snap_release(
    drag_start: float,
    drag_end: float,
    cards: Iterable[SnapCard],
    exclude_ids: Sequence[str] = (),
    threshold_hours: float = 20 / 60,
) -> Optional[SnapRelease]:
    """Nearest non-transfer card edge within the threshold, if any."""
    best: Optional[SnapRelease] = None
    best_dist = threshold_hours
    duration = drag_end - drag_start
    for card in cards:
        if card.entry_id in exclude_ids or card.is_transfer:
            continue
        dist_below = abs(drag_start - card.end_gh)
        if dist_below < best_dist:
            best_dist = dist_below
            best = SnapRelease(card.entry_id, "below", card.end_gh)
        dist_above = abs(drag_end - card.start_gh)
        if dist_above < best_dist:
            best_dist = dist_above
            best = SnapRelease(card.entry_id, "above", card.start_gh - duration)
    return best


class DragInteractionController:
    """
    One controller per timeline view; at most one entry is dragged at a time.

    `clock` returns seconds and is only consulted for the touch hold and the
    post-release click guard, so tests can drive it with a fake.
    """

    def __init__(
        self,
        pixels_per_hour: float,
        total_days: int,
        on_commit: Optional[Callable[[DragCommit], None]] = None,
        notifier=None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
        viewport_width: float = 1280,
        snap_targets: Sequence[SnapTarget] = (),
        locked_boundaries: Sequence[LockedBoundary] = (),
        snap_cards: Sequence[SnapCard] = (),
    ):
        if pixels_per_hour <= 0:
            raise ValueError("pixels_per_hour must be positive")
        self.pixels_per_hour = pixels_per_hour
        self.total_days = total_days
        self.on_commit = on_commit
        self.notifier = notifier
        self.settings = settings or default_settings
        self.clock = clock
        self.viewport_width = viewport_width
        self.snap_targets: List[SnapTarget] = list(snap_targets)
        self.locked_boundaries: List[LockedBoundary] = list(locked_boundaries)
        self.snap_cards: List[SnapCard] = list(snap_cards)

        self.state: Optional[DragState] = None
        self.pending: Optional[PendingTouch] = None
        self._click_guard_until = 0.0

    @property
    def total_hours(self) -> float:
        return self.total_days * 24.0

    @property
    def is_active(self) -> bool:
        return self.state is not None

    @property
    def is_busy(self) -> bool:
        return self.state is not None or self.pending is not None

    # ─── Press ──────────────────────────────────────────────────────

    def _rejection(self, entry: Entry, drag_type: DragType) -> Optional[str]:
        if entry.is_locked:
            return "locked"
        if entry.is_flight:
            return "flight"
        if entry.linked_flight_id and not linked_edge_allowed(entry.linked_type, drag_type):
            return "linked"
        return None

    def press(
        self,
        entry: Entry,
        drag_type: DragType,
        start_gh: float,
        end_gh: float,
        x: float,
        y: float,
        pointer: PointerKind = PointerKind.mouse,
        tz: Optional[str] = None,
    ) -> bool:
        """Begin a drag (mouse) or a hold (touch). Returns False when the press is rejected or ignored."""
        drag_type = DragType(drag_type)
        if self.is_busy:
            log.debug(f"Ignoring press on {entry.id}: a drag is already in progress")
            return False

        reason = self._rejection(entry, drag_type)
        if reason is not None:
            log.info(f"Rejected {drag_type.value} on {entry.id} ({reason})")
            if reason == "locked" and self.notifier is not None:
                self.notifier.locked_rejected(entry.id, entry.name)
            return False

        if pointer == PointerKind.touch:
            self.pending = PendingTouch(entry.id, drag_type, start_gh, end_gh, x, y, self.clock(), tz)
            return True

        self._start(entry.id, drag_type, start_gh, end_gh, x, y, pointer, tz)
        return True

    def _start(self, entry_id, drag_type, start_gh, end_gh, x, y, pointer, tz) -> DragState:
        self.state = DragState(
            entry_id=entry_id,
            drag_type=drag_type,
            pointer=pointer,
            original_start=start_gh,
            original_end=end_gh,
            current_start=start_gh,
            current_end=end_gh,
            start_x=x,
            start_y=y,
            current_x=x,
            current_y=y,
            tz=tz,
        )
        log.debug(f"Drag started: {entry_id} {drag_type.value} [{start_gh:.2f}, {end_gh:.2f}]")
        return self.state

    def _promote(self) -> Optional[DragState]:
        p = self.pending
        self.pending = None
        if p is None or p.cancelled:
            return None
        return self._start(p.entry_id, p.drag_type, p.start_gh, p.end_gh, p.x, p.y, PointerKind.touch, p.tz)

    def poll(self, now: Optional[float] = None) -> bool:
        """Promote a pending touch once the hold delay has elapsed. Returns True on promotion."""
        if self.pending is None:
            return False
        now = self.clock() if now is None else now
        if (now - self.pending.pressed_at) * 1000 >= self.settings.TOUCH_HOLD_MS:
            return self._promote() is not None
        return False

    # ─── Move ───────────────────────────────────────────────────────

    def pointer_move(self, x: float, y: float, now: Optional[float] = None) -> Optional[DragState]:
        if self.pending is not None:
            p = self.pending
            if math.hypot(x - p.x, y - p.y) > self.settings.TOUCH_MOVE_THRESHOLD_PX:
                log.debug(f"Touch hold on {p.entry_id} cancelled by movement")
                self.pending = None
                return None
            if not self.poll(now):
                return None

        state = self.state
        if state is None:
            return None

        if not state.was_dragged and math.hypot(x - state.start_x, y - state.start_y) > self.settings.DRAG_THRESHOLD_PX:
            state.was_dragged = True

        delta_hours = (y - state.start_y) / self.pixels_per_hour
        if state.drag_type == DragType.move:
            candidate = self._candidate_move(state, delta_hours)
            threshold = detach_threshold(self.viewport_width, self.settings)
            phase = DragPhase.detached if abs(x - state.start_x) > threshold else DragPhase.timeline
            candidate = replace(candidate, phase=phase)
            candidate.snap_release = detect_snap_release(
                candidate.current_start,
                candidate.current_end,
                self.snap_cards,
                exclude_ids=(state.entry_id,),
                threshold_hours=self.settings.SNAP_RELEASE_THRESHOLD_MINUTES / 60,
            )
        elif state.drag_type == DragType.resize_top:
            candidate = self._candidate_resize_top(state, delta_hours)
        else:
            candidate = self._candidate_resize_bottom(state, delta_hours)

        candidate.current_x = x
        candidate.current_y = y
        self.state = candidate
        return candidate

    def _candidate_move(self, state: DragState, delta_hours: float) -> DragState:
        snap = self.settings.SNAP_MINUTES
        total = self.total_hours
        duration = state.duration

        new_start = snap_to_grid(state.original_start + delta_hours, snap)
        new_start, new_end = self._clamp_to_range(new_start, new_start + duration, total)

        snapped = False
        threshold = self.settings.MAGNET_THRESHOLD_MINUTES / 60
        for target in self.snap_targets:
            if abs(new_start - target.global_hour) < threshold:
                new_start = target.global_hour
                new_end = new_start + duration
                snapped = True
                break

        walls = [w for w in self.locked_boundaries if w.entry_id != state.entry_id]
        hit_wall = False
        for wall in walls:
            if new_start < wall.end_gh and new_end > wall.start_gh:
                hit_wall = True
                if state.original_start <= wall.start_gh:
                    new_end = wall.start_gh
                    new_start = new_end - duration
                else:
                    new_start = wall.end_gh
                    new_end = new_start + duration

        clamped = False
        if hit_wall:
            new_start, new_end = self._clamp_to_range(new_start, new_end, total)
            if any(new_start < w.end_gh and new_end > w.start_gh for w in walls):
                # No room between the wall and the edge of the trip
                new_start, new_end = state.original_start, state.original_end
                clamped = True

        return replace(state, current_start=new_start, current_end=new_end,
                       snapped_to_target=snapped, hit_wall=hit_wall, clamped=clamped)

    @staticmethod
    def _clamp_to_range(start: float, end: float, total: float):
        """Keep [start, end] inside [0, total], shifting from whichever edge overflows."""
        if start < 0:
            end -= start
            start = 0.0
        if end > total:
            start -= end - total
            end = total
        return max(0.0, start), min(total, end)

    def _candidate_resize_top(self, state: DragState, delta_hours: float) -> DragState:
        min_hours = self.settings.min_duration_hours
        new_end = state.original_end
        new_start = snap_to_grid(state.original_start + delta_hours, self.settings.SNAP_MINUTES)
        clamped = False
        if new_start > new_end - min_hours:
            new_start = new_end - min_hours
            clamped = True
        if new_start < 0:
            new_start = 0.0
        return replace(state, current_start=new_start, current_end=new_end, clamped=clamped)

    def _candidate_resize_bottom(self, state: DragState, delta_hours: float) -> DragState:
        min_hours = self.settings.min_duration_hours
        new_start = state.original_start
        new_end = snap_to_grid(state.original_end + delta_hours, self.settings.SNAP_MINUTES)
        clamped = False
        if new_end < new_start + min_hours:
            new_end = new_start + min_hours
            clamped = True
        if new_end > self.total_hours:
            new_end = self.total_hours
        return replace(state, current_start=new_start, current_end=new_end, clamped=clamped)

    # ─── Release ────────────────────────────────────────────────────

    def release(self, now: Optional[float] = None) -> Optional[DragCommit]:
        """
        End the gesture. Emits at most one commit, and only when the pointer
        really moved and the snapped interval differs from the original.
        """
        now = self.clock() if now is None else now
        if self.pending is not None:
            # Tap: the hold never completed
            self.pending = None
            return None

        state = self.state
        self.state = None
        if state is None:
            return None
        self._click_guard_until = now + self.settings.CLICK_GUARD_MS / 1000 if state.was_dragged else 0.0

        if not state.was_dragged or not state.changed:
            log.debug(f"Drag on {state.entry_id} released without change")
            return None

        start, end = state.current_start, state.current_end
        if state.drag_type == DragType.move and state.snap_release is not None:
            start = state.snap_release.snap_start_hour
            end = start + state.duration

        commit = DragCommit(
            entry_id=state.entry_id,
            start_gh=start,
            end_gh=end,
            drag_type=state.drag_type,
            client_x=state.current_x,
            client_y=state.current_y,
            tz=state.tz,
            phase=state.phase,
            snap_release=state.snap_release if state.drag_type == DragType.move else None,
        )
        log.info(f"Drag commit: {commit.entry_id} {commit.drag_type.value} -> [{start:.2f}, {end:.2f}]")
        if self.on_commit is not None:
            self.on_commit(commit)
        return commit

    def cancel(self) -> None:
        self.pending = None
        self.state = None

    def suppress_click(self, now: Optional[float] = None) -> bool:
        """True while a click arriving right after a drag should be ignored."""
        now = self.clock() if now is None else now
        return now < self._click_guard_until
