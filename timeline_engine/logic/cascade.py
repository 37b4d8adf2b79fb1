"""
Cascading updates.

Every planner here is a pure function of one entry snapshot: it returns a
ChangePlan and never writes. The caller issues the plan as a single batch, so
no step ever reads a half-applied previous step.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.errors import CascadeTargetMissing, LockedEntryViolation
from timeline_engine.logic.blocks import entries_after_in_block, get_block
from timeline_engine.models import ChangePlan, Entry, IntervalChange, LinkedType

log = logging.getLogger(__name__)


def _change(entry: Entry, new_start: datetime, new_end: datetime, reason: str) -> IntervalChange:
    return IntervalChange(
        entry_id=entry.id,
        old_start=entry.start_time,
        old_end=entry.end_time,
        new_start=new_start,
        new_end=new_end,
        reason=reason,
    )


class CascadeUpdatePropagator:
    """
    Given an anchor's committed interval, re-anchor everything hanging off it:

    * a flight's check-in ends at the flight's new start, its check-out
      starts at the flight's new end, both keep their own UTC duration;
    * a transport leaving the anchor (or one of its moved check-in/outs)
      starts at that entry's new end and keeps its duration;
    * the transport's destination is pulled flush behind it when unlocked and
      the remaining gap is under the auto-snap threshold.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def plan(
        self,
        entries: Iterable[Entry],
        entry_id: str,
        new_start: datetime,
        new_end: datetime,
        reason: str = "commit",
    ) -> ChangePlan:
        snapshot = list(entries)
        by_id: Dict[str, Entry] = {e.id: e for e in snapshot}
        anchor = by_id.get(entry_id)
        if anchor is None:
            raise CascadeTargetMissing(entry_id)

        plan = ChangePlan()
        plan.add(_change(anchor, new_start, new_end, reason))
        moved: Dict[str, IntervalChange] = {}
        if plan.change_for(anchor.id):
            moved[anchor.id] = plan.change_for(anchor.id)

        if anchor.is_flight:
            for linked in (e for e in snapshot if e.linked_flight_id == anchor.id):
                change = self._relink(linked, new_start, new_end, plan)
                if change is not None:
                    moved[linked.id] = change

        for source_id, source_change in list(moved.items()):
            for transport in (e for e in snapshot if e.from_entry_id == source_id and e.id not in moved):
                self._follow(transport, source_change.new_end, by_id, plan)

        log.info(f"Cascade plan for {entry_id}: {len(plan.changes)} change(s), {len(plan.skipped)} skipped")
        return plan

    def _relink(self, linked: Entry, flight_start: datetime, flight_end: datetime, plan: ChangePlan) -> Optional[IntervalChange]:
        if linked.is_locked:
            log.warning(f"Linked entry {linked.id} is locked; leaving it in place")
            plan.skip(linked.id, "locked")
            return None

        duration = linked.duration
        if linked.linked_type == LinkedType.checkin:
            change = _change(linked, flight_start - duration, flight_start, "cascade:checkin")
        elif linked.linked_type == LinkedType.checkout:
            change = _change(linked, flight_end, flight_end + duration, "cascade:checkout")
        else:
            plan.skip(linked.id, "no linked_type")
            return None
        plan.add(change)
        return plan.change_for(linked.id)

    def _follow(self, transport: Entry, source_end: datetime, by_id: Dict[str, Entry], plan: ChangePlan) -> None:
        if transport.is_locked:
            log.warning(f"Transport {transport.id} is locked; not repositioning it")
            plan.skip(transport.id, "locked")
            return

        t_start = source_end
        t_end = source_end + transport.duration
        plan.add(_change(transport, t_start, t_end, "cascade:transport"))

        if not transport.to_entry_id:
            return
        try:
            target = by_id.get(transport.to_entry_id)
            if target is None:
                raise CascadeTargetMissing(transport.to_entry_id)
        except CascadeTargetMissing as e:
            log.warning(f"Skipping auto-snap after transport {transport.id}: {e}")
            plan.skip(transport.to_entry_id, "missing")
            return

        if target.is_locked:
            log.info(f"Auto-snap target {target.id} is locked; skipped")
            plan.skip(target.id, "locked")
            return

        gap = target.start_time - t_end
        if gap < timedelta(minutes=self.settings.AUTO_SNAP_THRESHOLD_MINUTES):
            plan.add(_change(target, t_end, t_end + target.duration, "cascade:auto-snap"))


def plan_chain_shift(
    entries: Iterable[Entry],
    entry_id: str,
    new_end: datetime,
    settings: Optional[Settings] = None,
) -> ChangePlan:
    """
    A bottom-edge resize shifts everything after the entry in its contiguous
    block by the same delta. A locked entry in that tail rejects the resize.
    """
    snapshot = list(entries)
    block = get_block(entry_id, snapshot, settings)
    plan = ChangePlan()
    resized = next((e for e in block.entries if e.id == entry_id), None)
    if resized is None:
        return plan

    delta = new_end - resized.end_time
    if not delta:
        return plan

    tail = entries_after_in_block(entry_id, block)
    locked = next((e for e in tail if e.is_locked), None)
    if locked is not None:
        raise LockedEntryViolation(locked.id, locked.name)

    for e in tail:
        plan.add(_change(e, e.start_time + delta, e.end_time + delta, "chain-shift"))
    return plan


@dataclass
class PushResult:
    plan: ChangePlan = field(default_factory=ChangePlan)
    pushed: Optional[Entry] = None
    blocked_by: Optional[Entry] = None  # locked card that was overlapped


def _overlaps(start: datetime, end: datetime, other: Entry) -> bool:
    return start < other.end_time and end > other.start_time


def plan_push_overlapped(entries: Iterable[Entry], moved_id: str, new_start: datetime, new_end: datetime) -> PushResult:
    """
    After a move, push the first non-transport card the moved entry now
    overlaps to start at the moved entry's end. The push is abandoned when it
    would create another overlap or run into a locked card; nothing cascades
    further.
    """
    others: List[Entry] = [e for e in entries if e.is_scheduled and e.id != moved_id]
    overlapped = next(
        (e for e in others if not e.is_transport and _overlaps(new_start, new_end, e)),
        None,
    )
    result = PushResult()
    if overlapped is None:
        return result
    if overlapped.is_locked:
        result.blocked_by = overlapped
        return result

    pushed_start = new_end
    pushed_end = new_end + overlapped.duration
    rest = [e for e in others if e.id != overlapped.id]
    if any(e.is_locked and _overlaps(pushed_start, pushed_end, e) for e in rest):
        log.info(f"Not pushing {overlapped.id}: it would hit a locked entry")
        return result
    if any(not e.is_transport and _overlaps(pushed_start, pushed_end, e) for e in rest):
        log.info(f"Not pushing {overlapped.id}: it would overlap another entry")
        return result

    result.plan.add(_change(overlapped, pushed_start, pushed_end, "push"))
    result.pushed = overlapped
    return result
