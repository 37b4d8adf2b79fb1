"""
Global-hour coordinates.

The whole trip is one vertical axis: global hour = day index * 24 + local
hour, where "local" is whichever zone the entry resolves to. The drag engine,
conflict detection and gap analysis all work in this coordinate.
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.logic.flight_groups import FlightGroup, FlightGroups
from timeline_engine.logic.timezones import (
    TimeZoneResolver,
    date_in_timezone,
    hour_in_timezone,
    local_to_utc,
    resolve_drop_tz,
)
from timeline_engine.models import Day, DayPosition, Entry, GlobalSpan

log = logging.getLogger(__name__)

MOVE = "move"


def format_minutes(total_minutes: int) -> str:
    h = (total_minutes // 60) % 24
    m = total_minutes % 60
    return f"{h:02d}:{m:02d}"


class GlobalCoordinateMapper:
    def __init__(self, days: List[Day], resolver: TimeZoneResolver, settings: Optional[Settings] = None):
        if not days:
            raise ValueError("A timeline needs at least one day")
        self.days = days
        self.resolver = resolver
        self.settings = settings or default_settings

    @property
    def total_days(self) -> int:
        return len(self.days)

    @property
    def total_hours(self) -> float:
        return self.total_days * 24.0

    @property
    def home_tz(self) -> str:
        return self.resolver.home_tz

    def date_for_index(self, day_index: int) -> date:
        """Date of a day index; indexes outside the trip extrapolate from the first day."""
        if 0 <= day_index < self.total_days:
            return self.days[day_index].date
        return self.days[0].date + timedelta(days=day_index)

    def clamp_day_index(self, day_index: int) -> int:
        return max(0, min(day_index, self.total_days - 1))

    def find_day_index(self, instant: datetime, tz_name: str) -> int:
        local_day = date_in_timezone(instant, tz_name, self.home_tz)
        return (local_day - self.days[0].date).days

    # ─── Forward mapping ────────────────────────────────────────────

    def to_global_hours(self, entry: Entry) -> GlobalSpan:
        resolved = self.resolver.resolve(entry)
        tz = resolved.display_tz
        day_idx = self.find_day_index(entry.start_time, tz)
        start_gh = day_idx * 24 + hour_in_timezone(entry.start_time, tz, self.home_tz)

        if resolved.is_flight:
            # Wall clock + duration: no jump across the arrival zone's grid
            return GlobalSpan(start_gh, start_gh + entry.duration_hours, tz)

        start_local = hour_in_timezone(entry.start_time, tz, self.home_tz)
        end_local = hour_in_timezone(entry.end_time, tz, self.home_tz)
        day_span = (date_in_timezone(entry.end_time, tz, self.home_tz)
                    - date_in_timezone(entry.start_time, tz, self.home_tz)).days
        end_gh = (day_idx + day_span) * 24 + end_local
        if day_span == 0 and end_local < start_local:
            end_gh += 24
        return GlobalSpan(start_gh, end_gh, tz)

    def group_bounds(self, group: FlightGroup) -> Tuple[float, float]:
        span = self.to_global_hours(group.flight)
        start = span.start_gh - group.checkin_hours
        end = span.end_gh + group.checkout_hours
        if end < start:
            end = (math.floor(start / 24) + 1) * 24
            log.warning(f"Flight group {group.flight.id} has inverted bounds; clamped end to {end}")
        return start, end

    def effective_bounds(self, entry: Entry, groups: Optional[FlightGroups] = None) -> Tuple[float, float]:
        """Visual bounds: a flight's span widened by its check-in/out."""
        group = groups.get(entry.id) if groups else None
        if group is not None:
            return self.group_bounds(group)
        span = self.to_global_hours(entry)
        return span.start_gh, span.end_gh

    # ─── Inverse mapping ────────────────────────────────────────────

    def from_global_hours(self, gh: float) -> DayPosition:
        day_index = math.floor(gh / 24)
        minutes = round((gh - day_index * 24) * 60)
        if minutes >= 24 * 60:
            day_index += 1
            minutes -= 24 * 60
        if day_index < 0:
            return DayPosition(day_index=0, local_time="00:00")
        if day_index > self.total_days - 1:
            # Pinned to the last minute of the trip
            return DayPosition(day_index=self.total_days - 1, local_time="23:59")
        return DayPosition(day_index=day_index, local_time=format_minutes(minutes))

    def commit_to_utc(self, day_index: int, local_time: str, tz_name: str) -> datetime:
        return local_to_utc(self.date_for_index(day_index), local_time, tz_name, self.home_tz)

    def global_hour_to_utc(self, gh: float, tz_name: str) -> datetime:
        """Instant at global hour `gh` read as wall-clock time in `tz_name`."""
        day_index = math.floor(gh / 24)
        minutes = round((gh - day_index * 24) * 60)
        if minutes >= 24 * 60:
            day_index += 1
            minutes -= 24 * 60
        return self.commit_to_utc(day_index, format_minutes(minutes), tz_name)

    def resolve_global_hour_tz(self, gh: float) -> str:
        day_index = self.clamp_day_index(math.floor(gh / 24))
        day = self.days[day_index]
        return resolve_drop_tz(gh - day_index * 24, day.tz_info, self.home_tz)

    def commit_interval(
        self,
        entry: Entry,
        start_gh: float,
        end_gh: float,
        drag_type: str = MOVE,
        tz: Optional[str] = None,
    ) -> Tuple[datetime, datetime]:
        """
        Convert a committed global-hour interval back to UTC.
        A move keeps the entry's UTC duration; a resize converts both edges.
        """
        tz = self.resolver.checked(tz) if tz else self.resolver.resolve(entry).display_tz
        new_start = self.global_hour_to_utc(start_gh, tz)
        if drag_type == MOVE:
            return new_start, new_start + entry.duration
        new_end = self.global_hour_to_utc(end_gh, tz)
        return new_start, new_end
