"""
TimelineService: the adapter a UI layer talks to.

It owns the current entry snapshot of one trip, derives positions, conflicts
and gap advice from it, builds the drag controller, and turns drag commits
into cascade plans that are applied optimistically and then persisted as one
batch.
"""

import logging
import math
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from timeline_engine.collaborators.notifications import LoggingNotifier, Notifier
from timeline_engine.collaborators.persistence import BatchResult, EntryStore, apply_batch
from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.errors import CascadeTargetMissing, DegenerateInterval, LockedEntryViolation
from timeline_engine.logic.cascade import CascadeUpdatePropagator, plan_chain_shift, plan_push_overlapped
from timeline_engine.logic.conflicts import ConflictDetector, ConflictMark, ConflictNotifier
from timeline_engine.logic.coordinates import GlobalCoordinateMapper
from timeline_engine.logic.days import build_days, compute_trip_extension
from timeline_engine.logic.drag import (
    DragCommit,
    DragInteractionController,
    DragType,
    LockedBoundary,
    SnapCard,
    SnapTarget,
    linked_edge_allowed,
)
from timeline_engine.logic.flight_groups import FlightGroupLinker, FlightGroups
from timeline_engine.logic.gaps import GapAdvice, GapSnapAdvisor, plan_snap, plan_transport_recalc, plan_transport_resize
from timeline_engine.logic.history import UndoHistory
from timeline_engine.logic.layout import LayoutSlot, compute_overlap_layout
from timeline_engine.logic.timezones import TimeZoneResolver
from timeline_engine.models import ChangePlan, Day, Entry, GlobalSpan, IntervalChange, Trip, apply_changes

log = logging.getLogger(__name__)


class TimelineService:
    def __init__(
        self,
        trip: Trip,
        store: EntryStore,
        routing=None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.trip = trip
        self.store = store
        self.routing = routing
        self.notifier = notifier or LoggingNotifier()
        self.settings = settings or default_settings

        self.linker = FlightGroupLinker()
        self.propagator = CascadeUpdatePropagator(self.settings)
        self.history = UndoHistory()
        self.conflict_notifier = ConflictNotifier(self.notifier)

        self.entries: List[Entry] = []
        self.days: List[Day] = []
        self.groups = FlightGroups()
        self.mapper: Optional[GlobalCoordinateMapper] = None
        self.refresh()

    # ─── Snapshot ───────────────────────────────────────────────────

    def refresh(self) -> List[Entry]:
        """Re-read the trip from the store and rebuild every derived view."""
        self.entries = self.store.read_entries(self.trip.id)
        log.info(f"Loaded {len(self.entries)} entries for trip {self.trip.id}")
        self._rebuild()
        return self.entries

    def _rebuild(self) -> None:
        scheduled = self.scheduled_entries()
        self.days = build_days(self.trip, scheduled, self.settings)
        day_map = {d.date: d.tz_info for d in self.days}
        resolver = TimeZoneResolver(day_map, self.trip.home_tz, scheduled)
        self.mapper = GlobalCoordinateMapper(self.days, resolver, self.settings)
        self.groups = self.linker.build(scheduled)
        self.detector = ConflictDetector(self.mapper)
        self.advisor = GapSnapAdvisor(self.mapper, self.linker, self.settings)

    def _by_id(self) -> Dict[str, Entry]:
        return {e.id: e for e in self.entries}

    def scheduled_entries(self) -> List[Entry]:
        return sorted((e for e in self.entries if e.is_scheduled), key=lambda e: e.start_time)

    def visible_entries(self) -> List[Entry]:
        """Scheduled entries minus the check-in/outs drawn inside their flight card."""
        return [e for e in self.scheduled_entries() if not self.groups.is_absorbed(e.id)]

    # ─── Derived views ──────────────────────────────────────────────

    def positions(self) -> Dict[str, GlobalSpan]:
        return {e.id: self.mapper.to_global_hours(e) for e in self.scheduled_entries()}

    def card_bounds(self) -> Dict[str, GlobalSpan]:
        """Visual bounds of every card; a flight card includes its check-in/out."""
        bounds = {}
        for e in self.visible_entries():
            start, end = self.mapper.effective_bounds(e, self.groups)
            bounds[e.id] = GlobalSpan(start, end, self.mapper.resolver.resolve(e).display_tz)
        return bounds

    def conflicts(self) -> Dict[str, ConflictMark]:
        marks = self.detector.detect(self.scheduled_entries(), self.groups)
        self.conflict_notifier.observe(len(marks))
        return marks

    def gaps(self) -> List[GapAdvice]:
        return self.advisor.advise_all(self.entries)

    def layout(self, day_index: int) -> List[LayoutSlot]:
        spans = []
        for entry_id, span in self.card_bounds().items():
            if math.floor(span.start_gh / 24) == day_index:
                spans.append((entry_id, span.start_gh * 60, span.end_gh * 60))
        return compute_overlap_layout(spans)

    # ─── Drag ───────────────────────────────────────────────────────

    def make_controller(
        self,
        pixels_per_hour: float,
        viewport_width: float = 1280,
        clock: Callable[[], float] = time.monotonic,
    ) -> DragInteractionController:
        bounds = self.card_bounds()
        by_id = self._by_id()
        targets = [
            SnapTarget(global_hour=span.end_gh, label=f"after {by_id[eid].name}")
            for eid, span in bounds.items() if by_id[eid].is_transport
        ]
        walls = [LockedBoundary(eid, span.start_gh, span.end_gh) for eid, span in bounds.items() if by_id[eid].is_locked]
        cards = [SnapCard(eid, span.start_gh, span.end_gh, by_id[eid].is_transport) for eid, span in bounds.items()]
        return DragInteractionController(
            pixels_per_hour=pixels_per_hour,
            total_days=len(self.days),
            on_commit=self.handle_commit,
            notifier=self.notifier,
            settings=self.settings,
            clock=clock,
            viewport_width=viewport_width,
            snap_targets=targets,
            locked_boundaries=walls,
            snap_cards=cards,
        )

    def _check_min_duration(self, entry_id: str, start: datetime, end: datetime) -> None:
        if end - start < timedelta(minutes=self.settings.MIN_DURATION_MINUTES):
            raise DegenerateInterval(entry_id, (end - start).total_seconds() / 60)

    def handle_commit(self, commit: DragCommit) -> Optional[BatchResult]:
        entry = self._by_id().get(commit.entry_id)
        if entry is None:
            log.warning(f"Commit for unknown entry {commit.entry_id}; ignoring")
            return None
        if entry.is_locked:
            self.notifier.locked_rejected(entry.id, entry.name)
            return None
        if entry.linked_flight_id and not linked_edge_allowed(entry.linked_type, commit.drag_type):
            log.warning(f"Rejected {commit.drag_type.value} on {entry.id}: it would detach it from flight {entry.linked_flight_id}")
            return None

        new_start, new_end = self.mapper.commit_interval(
            entry, commit.start_gh, commit.end_gh, commit.drag_type.value, commit.tz
        )
        try:
            if commit.drag_type != DragType.move:
                self._check_min_duration(entry.id, new_start, new_end)
        except DegenerateInterval as e:
            minimum = timedelta(minutes=self.settings.MIN_DURATION_MINUTES)
            log.warning(f"{e}; clamping to {self.settings.MIN_DURATION_MINUTES} min")
            if commit.drag_type == DragType.resize_top:
                new_start = new_end - minimum
            else:
                new_end = new_start + minimum

        plan = self.propagator.plan(self.entries, entry.id, new_start, new_end)
        shifted_transports: List[str] = []

        if commit.drag_type == DragType.resize_bottom:
            try:
                chain = plan_chain_shift(self.entries, entry.id, new_end, self.settings)
            except LockedEntryViolation as e:
                log.info(f"Resize of {entry.id} rejected: {e}")
                self.notifier.locked_rejected(e.entry_id, e.entry_name)
                return None
            plan.extend(chain)
            by_id = self._by_id()
            shifted_transports = [c.entry_id for c in chain.changes if by_id[c.entry_id].is_transport]

        if commit.drag_type == DragType.move and commit.snap_release is None:
            push = plan_push_overlapped(apply_changes(self.entries, plan.changes), entry.id, new_start, new_end)
            if push.blocked_by is not None:
                self.notifier.locked_rejected(push.blocked_by.id, push.blocked_by.name)
            elif push.pushed is not None:
                plan.extend(push.plan)
                self.notifier.pushed(push.pushed.id, push.pushed.name)

        result = self._commit_plan(plan, f"{commit.drag_type.value} {entry.name}")
        if commit.snap_release is not None:
            self.notifier.snap_succeeded(entry.id, entry.name)
        if shifted_transports and self.routing is not None:
            self.recalculate_transports(shifted_transports)
        return result

    def set_interval(self, entry_id: str, new_start: datetime, new_end: datetime) -> Optional[BatchResult]:
        """Programmatic edit (e.g. a time picker): same cascade as a drag, no chain shift or push."""
        entry = self._by_id().get(entry_id)
        if entry is None:
            raise CascadeTargetMissing(entry_id)
        if entry.is_locked:
            raise LockedEntryViolation(entry.id, entry.name)
        plan = self.propagator.plan(self.entries, entry_id, new_start, new_end)
        return self._commit_plan(plan, f"edit {entry.name}")

    # ─── Snap & transports ──────────────────────────────────────────

    def snap(self, transport_id: str, target_id: Optional[str] = None, mode: Optional[str] = None) -> Optional[BatchResult]:
        by_id = self._by_id()
        transport = by_id.get(transport_id)
        target_id = target_id or (transport.to_entry_id if transport else None)
        target = by_id.get(target_id) if target_id else None
        if transport is None or target is None:
            self.notifier.snap_failed(target_id or transport_id, "entry not found")
            return None
        try:
            plan = plan_snap(transport, target, self.routing, mode, self.settings)
        except LockedEntryViolation as e:
            self.notifier.locked_rejected(e.entry_id, e.entry_name)
            return None

        result = self._commit_plan(plan, f"snap {target.name}")
        if result.ok:
            self.notifier.snap_succeeded(target.id, target.name)
        else:
            self.notifier.snap_failed(target.id, "could not save")
        return result

    def switch_transport_mode(self, transport_id: str, duration_min: float) -> Optional[BatchResult]:
        plan = plan_transport_resize(self.entries, transport_id, duration_min, self.settings)
        return self._commit_plan(plan, "transport mode switch")

    def recalculate_transports(self, transport_ids: Iterable[str], mode: Optional[str] = None) -> Optional[BatchResult]:
        plan = plan_transport_recalc(self.entries, transport_ids, self.routing, mode, self.settings)
        return self._commit_plan(plan, "recalculate transport")

    # ─── History ────────────────────────────────────────────────────

    def undo(self) -> Optional[BatchResult]:
        action = self.history.undo()
        if action is None:
            return None
        return self._apply(action.undo_changes())

    def redo(self) -> Optional[BatchResult]:
        action = self.history.redo()
        if action is None:
            return None
        return self._apply(action.redo_changes())

    # ─── Writes ─────────────────────────────────────────────────────

    def _apply(self, changes: List[IntervalChange]) -> BatchResult:
        # Local state first; a failed write is logged and left for the next refresh
        self.entries = apply_changes(self.entries, changes)
        self._rebuild()
        return apply_batch(self.store, changes)

    def _commit_plan(self, plan: ChangePlan, description: str) -> BatchResult:
        if not plan.changes:
            log.debug(f"Nothing to write for {description}")
            return BatchResult()
        result = self._apply(plan.changes)
        self.history.push(description, plan.changes)
        self._extend_trip_if_needed(plan.changes)
        self.conflicts()
        return result

    def _extend_trip_if_needed(self, changes: List[IntervalChange]) -> None:
        latest = max(c.new_end for c in changes)
        extension = compute_trip_extension(self.trip, latest, self.settings)
        if extension is None:
            return
        if extension.end_date is not None:
            self.trip = self.trip.model_copy(update={"end_date": extension.end_date})
        else:
            self.trip = self.trip.model_copy(update={"duration_days": extension.duration_days})
        log.info(f"Trip {self.trip.id} extended to {extension.label}")
        self._rebuild()
        self.notifier.trip_extended(extension.label)
