# timeline_engine/models.py

import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from timeline_engine.config import settings

log = logging.getLogger(__name__)

# Legacy transport entries were only recognisable by their generated names.
TRANSPORT_NAME_PREFIXES = ("drive to", "walk to", "transit to", "cycle to")


def ensure_utc(v):
    if isinstance(v, str):
        dt = datetime.fromisoformat(v.replace('Z', '+00:00'))
        return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    if isinstance(v, datetime):
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v.astimezone(timezone.utc)
    raise ValueError("Invalid datetime format")


class LinkedType(str, enum.Enum):
    none = "none"
    checkin = "checkin"
    checkout = "checkout"


class KindTag(str, enum.Enum):
    flight = "flight"
    transfer = "transfer"
    airport_processing = "airport_processing"
    leisure = "leisure"


class EntryKind(BaseModel):
    """
    Closed variant decided once when an entry is ingested:
    Flight | Transfer | AirportProcessing | Leisure(category).
    """
    model_config = ConfigDict(frozen=True)

    tag: KindTag
    category: Optional[str] = None

    @classmethod
    def classify(cls, option: Optional["EntryOption"], from_entry_id: Optional[str], to_entry_id: Optional[str]) -> "EntryKind":
        category = option.category if option else None
        if category == "flight":
            return cls(tag=KindTag.flight, category=category)
        if category == "airport_processing":
            return cls(tag=KindTag.airport_processing, category=category)
        if category == "transfer" or (from_entry_id and to_entry_id):
            return cls(tag=KindTag.transfer, category=category or "transfer")
        name = (option.name if option else "").lower()
        if name.startswith(TRANSPORT_NAME_PREFIXES):
            return cls(tag=KindTag.transfer, category=category or "transfer")
        return cls(tag=KindTag.leisure, category=category)


class EntryOption(BaseModel):
    """The primary option of an entry: the domain attributes the engine reads."""
    name: str = ""
    category: Optional[str] = None
    departure_tz: Optional[str] = Field(default=None, description="IANA zone, flights only.")
    arrival_tz: Optional[str] = Field(default=None, description="IANA zone, flights only.")
    location_name: Optional[str] = None
    address: Optional[str] = None
    departure_location: Optional[str] = None
    arrival_location: Optional[str] = None


class Entry(BaseModel):
    """A scheduled (or unscheduled) itinerary item stored as a UTC interval."""
    id: str
    trip_id: Optional[str] = None
    start_time: datetime = Field(description="UTC start instant.")
    end_time: datetime = Field(description="UTC end instant.")
    is_locked: bool = False
    is_scheduled: bool = True
    linked_flight_id: Optional[str] = None
    linked_type: LinkedType = LinkedType.none
    from_entry_id: Optional[str] = None
    to_entry_id: Optional[str] = None
    option: Optional[EntryOption] = None
    kind: Optional[EntryKind] = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def parse_datetime_utc(cls, v):
        return ensure_utc(v)

    @field_validator('linked_type', mode='before')
    @classmethod
    def default_linked_type(cls, v):
        return LinkedType.none if v is None else v

    @model_validator(mode='after')
    def check_interval_and_kind(self):
        if self.start_time > self.end_time:
            log.warning(f"Entry {self.id}: start {self.start_time} is after end {self.end_time}. Swapping them.")
            self.start_time, self.end_time = self.end_time, self.start_time
        if self.kind is None:
            self.kind = EntryKind.classify(self.option, self.from_entry_id, self.to_entry_id)
        return self

    @property
    def name(self) -> str:
        return self.option.name if self.option and self.option.name else "Entry"

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def duration_hours(self) -> float:
        return self.duration.total_seconds() / 3600

    @property
    def is_flight(self) -> bool:
        return self.kind.tag == KindTag.flight

    @property
    def has_flight_zones(self) -> bool:
        """A flight that carries both zones is displayed departure-anchored."""
        return self.is_flight and bool(self.option.departure_tz and self.option.arrival_tz)

    @property
    def is_transport(self) -> bool:
        return self.kind.tag == KindTag.transfer

    @property
    def is_airport_processing(self) -> bool:
        return self.kind.tag == KindTag.airport_processing

    def with_interval(self, start: datetime, end: datetime) -> "Entry":
        return self.model_copy(update={"start_time": ensure_utc(start), "end_time": ensure_utc(end)})


class Trip(BaseModel):
    id: str
    home_tz: str = Field(default_factory=lambda: settings.HOME_TZ)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_days: Optional[int] = None

    @property
    def is_dated(self) -> bool:
        return self.start_date is not None


class FlightBoundary(BaseModel):
    origin_tz: str
    destination_tz: str
    flight_start_hour: float = Field(description="Local departure hour in origin_tz.")
    flight_end_hour: float = Field(description="flight_start_hour + UTC duration.")
    flight_end_utc: datetime

    @field_validator('flight_end_utc', mode='before')
    @classmethod
    def parse_end_utc(cls, v):
        return ensure_utc(v)


class ActiveTimezoneInfo(BaseModel):
    active_tz: str
    flights: List[FlightBoundary] = Field(default_factory=list)


class Day(BaseModel):
    index: int
    date: date
    label: str
    tz_info: ActiveTimezoneInfo


@dataclass(frozen=True)
class GlobalSpan:
    """An entry's position on the global-hour axis."""
    start_gh: float
    end_gh: float
    resolved_tz: str

    @property
    def hours(self) -> float:
        return self.end_gh - self.start_gh


@dataclass(frozen=True)
class DayPosition:
    day_index: int
    local_time: str  # "HH:MM"


@dataclass(frozen=True)
class IntervalChange:
    """One entry's interval moving from (old_start, old_end) to (new_start, new_end)."""
    entry_id: str
    old_start: datetime
    old_end: datetime
    new_start: datetime
    new_end: datetime
    reason: str = "commit"

    @property
    def is_noop(self) -> bool:
        return self.old_start == self.new_start and self.old_end == self.new_end

    def inverted(self) -> "IntervalChange":
        return IntervalChange(
            entry_id=self.entry_id,
            old_start=self.new_start,
            old_end=self.new_end,
            new_start=self.old_start,
            new_end=self.old_end,
            reason=f"undo:{self.reason}",
        )


@dataclass
class SkippedStep:
    entry_id: str
    reason: str


@dataclass
class ChangePlan:
    """Changes computed from one snapshot, issued later as an unordered batch."""
    changes: List[IntervalChange] = field(default_factory=list)
    skipped: List[SkippedStep] = field(default_factory=list)

    def add(self, change: IntervalChange) -> None:
        """Record a change; a later change to the same entry keeps the first one's old interval."""
        existing = self.change_for(change.entry_id)
        if existing is not None:
            change = replace(change, old_start=existing.old_start, old_end=existing.old_end)
            self.changes.remove(existing)
        if change.is_noop:
            return
        self.changes.append(change)

    def skip(self, entry_id: str, reason: str) -> None:
        self.skipped.append(SkippedStep(entry_id=entry_id, reason=reason))

    def extend(self, other: "ChangePlan") -> None:
        for change in other.changes:
            self.add(change)
        self.skipped.extend(other.skipped)

    def change_for(self, entry_id: str) -> Optional[IntervalChange]:
        for change in self.changes:
            if change.entry_id == entry_id:
                return change
        return None

    @property
    def entry_ids(self) -> List[str]:
        return [c.entry_id for c in self.changes]


def apply_changes(entries: List[Entry], changes: List[IntervalChange]) -> List[Entry]:
    """Return a copy of `entries` with the new intervals applied."""
    by_id = {c.entry_id: c for c in changes}
    updated = []
    for entry in entries:
        change = by_id.get(entry.id)
        updated.append(entry.with_interval(change.new_start, change.new_end) if change else entry)
    return updated
