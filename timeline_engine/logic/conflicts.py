"""
Overlap detection between consecutive timeline cards, plus the heavier
"does this placement leave enough travel time" analysis used when an entry
is dropped between two others.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from timeline_engine.logic.coordinates import GlobalCoordinateMapper
from timeline_engine.logic.flight_groups import FlightGroups
from timeline_engine.logic.timezones import utc_to_local
from timeline_engine.models import Entry, IntervalChange

log = logging.getLogger(__name__)

TOP = "top"
BOTTOM = "bottom"
MAX_RECOMMENDATIONS = 5
SHORTEN_MARGIN_MINUTES = 15


@dataclass(frozen=True)
class ConflictMark:
    minutes: int
    position: str  # TOP | BOTTOM


class ConflictDetector:
    """
    Flags overlaps between adjacent pairs only; a card overlapping the one
    after its neighbour is not reported.
    """

    def __init__(self, mapper: GlobalCoordinateMapper):
        self.mapper = mapper

    def detect(self, sorted_entries: Sequence[Entry], groups: Optional[FlightGroups] = None) -> Dict[str, ConflictMark]:
        visible = [
            e for e in sorted_entries
            if e.is_scheduled and not (groups and groups.is_absorbed(e.id))
        ]
        marks: Dict[str, ConflictMark] = {}
        for a, b in zip(visible, visible[1:]):
            _, a_end = self.mapper.effective_bounds(a, groups)
            b_start, _ = self.mapper.effective_bounds(b, groups)
            if a_end <= b_start:
                continue
            minutes = round((a_end - b_start) * 60)
            marks[a.id] = ConflictMark(minutes=minutes, position=BOTTOM)
            marks[b.id] = ConflictMark(minutes=minutes, position=TOP)
        if marks:
            log.debug(f"Detected {len(marks)} conflicting entries")
        return marks


class ConflictNotifier:
    """Turns a stream of conflict counts into one notification per change."""

    def __init__(self, notifier):
        self.notifier = notifier
        self._last_count = 0

    def observe(self, count: int) -> bool:
        changed = count != self._last_count
        self._last_count = count
        if changed and count > 0:
            self.notifier.conflict_count_changed(count)
            return True
        return False


# ─── Placement analysis ─────────────────────────────────────────────

@dataclass
class ConflictInfo:
    entry_id: str
    entry_name: str
    discrepancy_min: int  # > 0 means the placement is short on time
    prev_travel_min: Optional[float]
    next_travel_min: Optional[float]
    prev_gap_min: float
    next_gap_min: float


@dataclass
class Recommendation:
    id: str
    label: str
    description: str
    changes: List[IntervalChange] = field(default_factory=list)
    unschedule_entry_id: Optional[str] = None


def analyze_conflict(
    placed: Entry,
    prev_entry: Optional[Entry],
    next_entry: Optional[Entry],
    prev_travel_min: Optional[float],
    next_travel_min: Optional[float],
) -> ConflictInfo:
    """Minutes of travel time missing around `placed`; missing neighbours leave unlimited room."""
    prev_gap = (placed.start_time - prev_entry.end_time).total_seconds() / 60 if prev_entry else math.inf
    next_gap = (next_entry.start_time - placed.end_time).total_seconds() / 60 if next_entry else math.inf

    prev_shortfall = max(0.0, (prev_travel_min or 0) - prev_gap)
    next_shortfall = max(0.0, (next_travel_min or 0) - next_gap)

    return ConflictInfo(
        entry_id=placed.id,
        entry_name=placed.name,
        discrepancy_min=round(prev_shortfall + next_shortfall),
        prev_travel_min=prev_travel_min,
        next_travel_min=next_travel_min,
        prev_gap_min=prev_gap if math.isinf(prev_gap) else round(prev_gap),
        next_gap_min=next_gap if math.isinf(next_gap) else round(next_gap),
    )


def _shifted(entry: Entry, minutes: int, reason: str) -> IntervalChange:
    delta = timedelta(minutes=minutes)
    return IntervalChange(
        entry_id=entry.id,
        old_start=entry.start_time,
        old_end=entry.end_time,
        new_start=entry.start_time + delta,
        new_end=entry.end_time + delta,
        reason=reason,
    )


def generate_recommendations(
    conflict: ConflictInfo,
    day_entries: Sequence[Entry],
    placed_entry_id: str,
    tz_name: str = "UTC",
) -> List[Recommendation]:
    """
    Ways to win back `conflict.discrepancy_min` minutes from the other
    unlocked entries of the day: shift them, shorten them, or skip them.
    """
    discrepancy = conflict.discrepancy_min
    if discrepancy <= 0:
        return []

    def hhmm(instant):
        return utc_to_local(instant, tz_name)[1]

    ids = [e.id for e in day_entries]
    placed_idx = ids.index(placed_entry_id) if placed_entry_id in ids else -1
    unlocked = [e for e in day_entries if not e.is_locked and e.id != placed_entry_id]

    recs: List[Recommendation] = []
    for entry in unlocked:
        idx = ids.index(entry.id)
        duration_min = entry.duration.total_seconds() / 60

        if idx > placed_idx:
            change = _shifted(entry, discrepancy, "shift-later")
            recs.append(Recommendation(
                id=f"shift-later-{entry.id}",
                label=f'Start "{entry.name}" {discrepancy}m later',
                description=f"Move from {hhmm(entry.start_time)} to {hhmm(change.new_start)}",
                changes=[change],
            ))
        if idx < placed_idx:
            change = _shifted(entry, -discrepancy, "shift-earlier")
            recs.append(Recommendation(
                id=f"shift-earlier-{entry.id}",
                label=f'Start "{entry.name}" {discrepancy}m earlier',
                description=f"Move from {hhmm(entry.start_time)} to {hhmm(change.new_start)}",
                changes=[change],
            ))
        if duration_min > discrepancy + SHORTEN_MARGIN_MINUTES:
            new_end = entry.end_time - timedelta(minutes=discrepancy)
            recs.append(Recommendation(
                id=f"shorten-{entry.id}",
                label=f'Shorten "{entry.name}" by {discrepancy}m',
                description=f"End at {hhmm(new_end)} instead of {hhmm(entry.end_time)}",
                changes=[IntervalChange(entry.id, entry.start_time, entry.end_time,
                                        entry.start_time, new_end, reason="shorten")],
            ))

    for entry in unlocked:
        recs.append(Recommendation(
            id=f"skip-{entry.id}",
            label=f'Skip "{entry.name}"',
            description="Move to ideas (unscheduled)",
            unschedule_entry_id=entry.id,
        ))

    return recs[:MAX_RECOMMENDATIONS]
