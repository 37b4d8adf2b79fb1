"""
Gap classification between neighbouring cards and the snap/transport plans
that act on those gaps.
"""

import enum
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, List, Optional, Sequence

from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.errors import LockedEntryViolation, RoutingUnavailable
from timeline_engine.logic.blocks import entries_after_in_block, get_block
from timeline_engine.logic.coordinates import GlobalCoordinateMapper
from timeline_engine.logic.flight_groups import FlightGroupLinker, FlightGroups
from timeline_engine.models import ChangePlan, Entry, IntervalChange, apply_changes

log = logging.getLogger(__name__)

ROUTE_MODES = ["walk", "transit", "drive", "bicycle"]


class GapTier(str, enum.Enum):
    contiguous = "contiguous"      # <= 5 min, nothing to show
    transport = "transport"        # short gap between two events: "insert transport"
    open = "open"                  # long gap between two events: "add something"
    auto_snap = "auto_snap"        # transport -> unlocked event, cascade pulls it
    snap = "snap"                  # transport -> event, 30-90 min
    snap_split = "snap_split"      # transport -> event, > 90 min
    bridged = "bridged"            # a transport already sits in the gap
    none = "none"                  # event -> transport, the leg owns the gap


@dataclass(frozen=True)
class GapAdvice:
    prev_id: str
    next_id: str
    gap_minutes: int
    tier: GapTier
    offer_transport_shortcut: bool = False
    offer_snap: bool = False
    offer_add: bool = False
    split_add: bool = False
    snap_position: Optional[str] = None  # "center" | "near_transport"
    locked_reason: Optional[str] = None


class GapSnapAdvisor:
    def __init__(self, mapper: GlobalCoordinateMapper, linker: Optional[FlightGroupLinker] = None,
                 settings: Optional[Settings] = None):
        self.mapper = mapper
        self.linker = linker or FlightGroupLinker()
        self.settings = settings or default_settings

    def gap_minutes(self, prev: Entry, nxt: Entry, groups: Optional[FlightGroups] = None) -> int:
        _, a_end = self.mapper.effective_bounds(prev, groups)
        b_start, _ = self.mapper.effective_bounds(nxt, groups)
        return round((b_start - a_end) * 60)

    def classify(
        self,
        prev: Entry,
        nxt: Entry,
        groups: Optional[FlightGroups] = None,
        between: Sequence[Entry] = (),
    ) -> GapAdvice:
        s = self.settings
        gap = self.gap_minutes(prev, nxt, groups)

        def advice(tier, **kw):
            return GapAdvice(prev_id=prev.id, next_id=nxt.id, gap_minutes=gap, tier=tier, **kw)

        if gap <= s.CONTIGUOUS_GAP_MINUTES:
            return advice(GapTier.contiguous)

        if prev.is_transport and not nxt.is_transport:
            locked_reason = f"{nxt.name} is locked" if nxt.is_locked else None
            if gap < s.AUTO_SNAP_THRESHOLD_MINUTES and not nxt.is_locked:
                return advice(GapTier.auto_snap)
            if gap <= s.CENTERED_SNAP_MAX_MINUTES:
                return advice(GapTier.snap, offer_snap=not nxt.is_locked,
                              snap_position="center", locked_reason=locked_reason)
            return advice(GapTier.snap_split, offer_snap=not nxt.is_locked, offer_add=True,
                          snap_position="near_transport", locked_reason=locked_reason)

        if prev.is_transport or nxt.is_transport:
            return advice(GapTier.none)

        if any(e.is_transport for e in between):
            return advice(GapTier.bridged)

        if gap < s.TRANSPORT_GAP_MINUTES:
            return advice(GapTier.transport, offer_transport_shortcut=True)
        return advice(GapTier.open, offer_add=True, split_add=gap > s.SPLIT_ADD_GAP_MINUTES)

    def advise_all(self, entries: Iterable[Entry]) -> List[GapAdvice]:
        """Advice for every pair of neighbouring visible cards, in start order."""
        scheduled = sorted((e for e in entries if e.is_scheduled), key=lambda e: e.start_time)
        groups = self.linker.build(scheduled)
        visible = [e for e in scheduled if not groups.is_absorbed(e.id)]

        result = []
        for prev, nxt in zip(visible, visible[1:]):
            between = [
                e for e in visible
                if e.id not in (prev.id, nxt.id) and prev.start_time <= e.start_time <= nxt.start_time
            ]
            result.append(self.classify(prev, nxt, groups, between))
        return result


# ─── Routing-backed plans ───────────────────────────────────────────

def _round_up(minutes: float, step: int) -> int:
    return int(math.ceil(minutes / step) * step)


def routed_minutes(
    routing,
    from_address: Optional[str],
    to_address: Optional[str],
    departure,
    mode: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Optional[int]:
    """
    Travel time for `mode` (or the first result) rounded up to the transport
    grid, or None when routing is missing, fails, or returns nothing.
    """
    settings = settings or default_settings
    if routing is None or not from_address or not to_address:
        return None
    mode = mode or settings.DEFAULT_TRANSPORT_MODE
    try:
        results = routing.get_route(from_address, to_address, ROUTE_MODES, departure)
    except RoutingUnavailable as e:
        log.warning(f"Routing unavailable for {from_address} -> {to_address}: {e}")
        return None
    if not results:
        return None
    chosen = next((r for r in results if r.mode == mode), results[0])
    return _round_up(chosen.duration_min, settings.TRANSPORT_ROUND_MINUTES)


def plan_snap(
    transport: Entry,
    target: Entry,
    routing=None,
    mode: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> ChangePlan:
    """
    Move `target` to start exactly when `transport` ends. With a routing
    collaborator the transport block is first resized to the real travel time.
    """
    settings = settings or default_settings
    if target.is_locked:
        raise LockedEntryViolation(target.id, target.name)

    plan = ChangePlan()
    opt = transport.option
    minutes = routed_minutes(
        routing,
        opt.departure_location if opt else None,
        opt.arrival_location if opt else None,
        transport.start_time,
        mode,
        settings,
    )
    t_end = transport.end_time
    if minutes is not None:
        t_end = transport.start_time + timedelta(minutes=minutes)
        plan.add(IntervalChange(transport.id, transport.start_time, transport.end_time,
                                transport.start_time, t_end, reason="snap:transport"))
    else:
        log.info(f"Keeping transport {transport.id} at its current length")

    plan.add(IntervalChange(target.id, target.start_time, target.end_time,
                            t_end, t_end + target.duration, reason="snap"))
    return plan


def _expand_block(entries: List[Entry], transport_id: str, new_end, settings: Settings, plan: ChangePlan) -> None:
    # Expand only: followers already clear of the new end stay put
    block = get_block(transport_id, entries, settings)
    cursor = new_end
    for follower in entries_after_in_block(transport_id, block):
        if follower.start_time >= cursor:
            break
        if follower.is_locked:
            log.warning(f"Stopping block expansion at locked entry {follower.id}")
            plan.skip(follower.id, "locked")
            break
        shift = cursor - follower.start_time
        plan.add(IntervalChange(follower.id, follower.start_time, follower.end_time,
                                follower.start_time + shift, follower.end_time + shift, reason="expand"))
        cursor = follower.end_time + shift


def plan_transport_resize(
    entries: Iterable[Entry],
    transport_id: str,
    new_minutes: float,
    settings: Optional[Settings] = None,
) -> ChangePlan:
    """Set a transport to `new_minutes` (rounded up) and push its block forward if it grew."""
    settings = settings or default_settings
    snapshot = list(entries)
    transport = next((e for e in snapshot if e.id == transport_id), None)
    plan = ChangePlan()
    if transport is None:
        plan.skip(transport_id, "missing")
        return plan

    minutes = _round_up(new_minutes, settings.TRANSPORT_ROUND_MINUTES)
    new_end = transport.start_time + timedelta(minutes=minutes)
    plan.add(IntervalChange(transport.id, transport.start_time, transport.end_time,
                            transport.start_time, new_end, reason="transport-resize"))
    if new_end > transport.end_time:
        _expand_block(snapshot, transport.id, new_end, settings, plan)
    return plan


def plan_transport_recalc(
    entries: Iterable[Entry],
    transport_ids: Iterable[str],
    routing,
    mode: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> ChangePlan:
    """Ask routing for each transport's current duration; failures leave it unchanged."""
    settings = settings or default_settings
    snapshot = list(entries)
    plan = ChangePlan()
    for tid in transport_ids:
        current = apply_changes(snapshot, plan.changes)
        transport = next((e for e in current if e.id == tid), None)
        if transport is None or not transport.is_transport:
            plan.skip(tid, "missing")
            continue
        opt = transport.option
        if not opt or not opt.departure_location or not opt.arrival_location:
            continue
        minutes = routed_minutes(routing, opt.departure_location, opt.arrival_location,
                                 transport.start_time, mode, settings)
        if minutes is None:
            plan.skip(tid, "routing unavailable")
            continue
        plan.extend(plan_transport_resize(current, tid, minutes, settings))
    return plan
