"""
Flight groups: a flight plus its optional check-in and check-out entries,
rendered and dragged as one unit.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from timeline_engine.models import Entry, LinkedType

log = logging.getLogger(__name__)


@dataclass
class FlightGroup:
    flight: Entry
    checkin: Optional[Entry] = None
    checkout: Optional[Entry] = None

    @property
    def members(self) -> Tuple[Entry, ...]:
        return tuple(e for e in (self.checkin, self.flight, self.checkout) if e is not None)

    @property
    def checkin_hours(self) -> float:
        return self.checkin.duration_hours if self.checkin else 0.0

    @property
    def checkout_hours(self) -> float:
        return self.checkout.duration_hours if self.checkout else 0.0

    def segment_fractions(self) -> Dict[str, float]:
        """Share of the group's UTC length taken by each segment."""
        parts = {
            "checkin": self.checkin_hours,
            "flight": self.flight.duration_hours,
            "checkout": self.checkout_hours,
        }
        total = sum(parts.values())
        if total <= 0:
            return {"checkin": 0.0, "flight": 1.0, "checkout": 0.0}
        return {k: v / total for k, v in parts.items()}


@dataclass
class FlightGroups:
    groups: Dict[str, FlightGroup] = field(default_factory=dict)
    linked_ids: FrozenSet[str] = frozenset()

    def get(self, entry_id: str) -> Optional[FlightGroup]:
        return self.groups.get(entry_id)

    def is_absorbed(self, entry_id: str) -> bool:
        return entry_id in self.linked_ids


def _cache_key(entries: Tuple[Entry, ...]):
    return tuple(
        (e.id, e.kind.tag, e.linked_flight_id, e.linked_type, e.start_time, e.end_time, e.is_scheduled,
         e.is_locked, e.option.departure_tz if e.option else None, e.option.arrival_tz if e.option else None)
        for e in entries
    )


def build_groups(entries: Iterable[Entry]) -> FlightGroups:
    """
    An entry belongs to a flight's group iff its linked_flight_id is the
    flight's id; linked_type picks the check-in or check-out slot.
    """
    entries = list(entries)
    groups: Dict[str, FlightGroup] = {e.id: FlightGroup(flight=e) for e in entries if e.is_flight}
    linked = set()

    for e in entries:
        if not e.linked_flight_id:
            continue
        group = groups.get(e.linked_flight_id)
        if group is None:
            log.debug(f"Entry {e.id} links to missing flight {e.linked_flight_id}; positioned independently")
            continue
        linked.add(e.id)
        if e.linked_type == LinkedType.checkin:
            group.checkin = e
        elif e.linked_type == LinkedType.checkout:
            group.checkout = e

    return FlightGroups(groups=groups, linked_ids=frozenset(linked))


class FlightGroupLinker:
    """Memoizes build_groups on the entry set so one render pass builds groups once."""

    def __init__(self):
        self._key = None
        self._result: Optional[FlightGroups] = None

    def build(self, entries: Iterable[Entry]) -> FlightGroups:
        entries = tuple(entries)
        key = _cache_key(entries)
        if self._result is None or key != self._key:
            self._result = build_groups(entries)
            self._key = key
        return self._result
