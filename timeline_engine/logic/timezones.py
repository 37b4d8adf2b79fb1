"""
Timezone conversion and resolution.

Entries are stored as UTC instants. Which IANA zone an entry is *shown* in
depends on where the traveller is at that point of the trip, which changes at
flight boundaries. This module is the single source of truth for that choice.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from functools import lru_cache
from typing import Dict, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timeline_engine.errors import TimezoneResolutionError
from timeline_engine.models import ActiveTimezoneInfo, Entry, FlightBoundary

log = logging.getLogger(__name__)


# ─── Core UTC <-> local conversions ─────────────────────────────────

@lru_cache(maxsize=256)
def zone_for(tz_name: Optional[str]) -> tzinfo:
    """Resolve an IANA name, raising TimezoneResolutionError when it is unknown."""
    if not tz_name:
        raise TimezoneResolutionError(tz_name)
    if tz_name.upper() in ("UTC", "Z", "GMT"):
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise TimezoneResolutionError(tz_name) from e


def is_valid_zone(tz_name: Optional[str]) -> bool:
    try:
        zone_for(tz_name)
        return True
    except TimezoneResolutionError:
        return False


def safe_zone(tz_name: Optional[str], fallback: str = "UTC") -> tzinfo:
    """Like zone_for, but falls back to `fallback` (and then UTC) instead of raising."""
    try:
        return zone_for(tz_name)
    except TimezoneResolutionError as e:
        log.warning(f"{e}; falling back to {fallback}")
        try:
            return zone_for(fallback)
        except TimezoneResolutionError:
            log.warning(f"Fallback timezone {fallback!r} is invalid too, using UTC")
            return timezone.utc


def to_local(instant: datetime, tz_name: str, fallback: str = "UTC") -> datetime:
    return instant.astimezone(safe_zone(tz_name, fallback))


def utc_to_local(instant: datetime, tz_name: str, fallback: str = "UTC") -> Tuple[date, str]:
    """Local calendar date and "HH:MM" wall-clock string of a UTC instant."""
    local = to_local(instant, tz_name, fallback)
    return local.date(), f"{local.hour:02d}:{local.minute:02d}"


def date_in_timezone(instant: datetime, tz_name: str, fallback: str = "UTC") -> date:
    return to_local(instant, tz_name, fallback).date()


def hour_in_timezone(instant: datetime, tz_name: str, fallback: str = "UTC") -> float:
    """Fractional wall-clock hour, e.g. 14:30 -> 14.5. Seconds are ignored."""
    local = to_local(instant, tz_name, fallback)
    return local.hour + local.minute / 60


def parse_hhmm(time_str: str) -> time:
    hh, mm = time_str.split(":")[:2]
    return time(int(hh), int(mm))


def local_to_utc(day: date, time_str: str, tz_name: str, fallback: str = "UTC") -> datetime:
    """Convert a local date + "HH:MM" in `tz_name` to an aware UTC datetime."""
    local = datetime.combine(day, parse_hhmm(time_str), tzinfo=safe_zone(tz_name, fallback))
    return local.astimezone(timezone.utc)


# ─── Per-day active timezone ────────────────────────────────────────

def _flight_boundary(flight: Entry, fallback: str) -> FlightBoundary:
    opt = flight.option
    dep_hour = hour_in_timezone(flight.start_time, opt.departure_tz, fallback)
    return FlightBoundary(
        origin_tz=opt.departure_tz,
        destination_tz=opt.arrival_tz,
        flight_start_hour=dep_hour,
        flight_end_hour=dep_hour + flight.duration_hours,
        flight_end_utc=flight.end_time,
    )


def build_day_timezone_map(days: Iterable[date], entries: Iterable[Entry], home_tz: str) -> Dict[date, ActiveTimezoneInfo]:
    """
    Walk the trip day by day and work out the active zone.

    Before the first flight the traveller is in that flight's departure zone.
    A day with flights gets one FlightBoundary per flight and the last flight's
    arrival zone as its active zone; the following days inherit it.
    """
    scheduled = sorted((e for e in entries if e.is_scheduled), key=lambda e: e.start_time)
    flights = [e for e in scheduled if e.has_flight_zones]

    current_tz = home_tz
    if flights:
        current_tz = flights[0].option.departure_tz

    tz_map: Dict[date, ActiveTimezoneInfo] = {}
    for day in days:
        day_flights = [f for f in flights if date_in_timezone(f.start_time, current_tz, home_tz) == day]
        if not day_flights:
            tz_map[day] = ActiveTimezoneInfo(active_tz=current_tz)
            continue

        boundaries = [_flight_boundary(f, home_tz) for f in day_flights]
        post_flight_tz = day_flights[-1].option.arrival_tz
        tz_map[day] = ActiveTimezoneInfo(active_tz=post_flight_tz, flights=boundaries)
        current_tz = post_flight_tz
    return tz_map


def resolve_drop_tz(local_hour: float, tz_info: Optional[ActiveTimezoneInfo], home_tz: str) -> str:
    """Zone for a visual slot: after the day's last flight lands, the destination zone."""
    if tz_info is None:
        return home_tz
    if not tz_info.flights:
        return tz_info.active_tz or home_tz
    last = tz_info.flights[-1]
    return last.destination_tz if local_hour >= last.flight_end_hour else last.origin_tz


# ─── Entry resolution ───────────────────────────────────────────────

@dataclass(frozen=True)
class ResolvedZone:
    display_tz: str   # zone for the start (and for the end, unless a flight)
    end_tz: str
    is_flight: bool


class TimeZoneResolver:
    """
    Decides which zone each entry is displayed and edited in.

    Flights with both zones start in their departure zone; their end is drawn
    as start + UTC duration rather than converted into the arrival zone.
    Everything else uses the day's boundary: at/after the flight's UTC end the
    destination zone, before it the origin zone. Transport legs follow the
    entry they leave from.
    """

    def __init__(self, day_map: Dict[date, ActiveTimezoneInfo], home_tz: str, entries: Iterable[Entry] = ()):
        self.day_map = day_map
        self.home_tz = home_tz if is_valid_zone(home_tz) else "UTC"
        if self.home_tz != home_tz:
            log.warning(f"Home timezone {home_tz!r} is invalid, using UTC")
        self._by_id = {e.id: e for e in entries}

    def checked(self, tz_name: Optional[str]) -> str:
        """Return `tz_name` if it resolves, else the home zone."""
        if is_valid_zone(tz_name):
            return tz_name
        log.warning(f"Unknown timezone {tz_name!r}; using home timezone {self.home_tz}")
        return self.home_tz

    def day_info_for(self, entry: Entry) -> Optional[Tuple[date, ActiveTimezoneInfo]]:
        for day, info in self.day_map.items():
            if date_in_timezone(entry.start_time, self.checked(info.active_tz), self.home_tz) == day:
                return day, info
        return None

    def _side_of_boundary(self, instant: datetime, boundary: FlightBoundary) -> str:
        tz = boundary.destination_tz if instant >= boundary.flight_end_utc else boundary.origin_tz
        return self.checked(tz)

    def resolve(self, entry: Entry, day_info: Optional[ActiveTimezoneInfo] = None) -> ResolvedZone:
        if entry.has_flight_zones:
            return ResolvedZone(
                display_tz=self.checked(entry.option.departure_tz),
                end_tz=self.checked(entry.option.arrival_tz),
                is_flight=True,
            )

        if day_info is None:
            found = self.day_info_for(entry)
            if found is None:
                return ResolvedZone(self.home_tz, self.home_tz, False)
            day_info = found[1]

        tz = self.checked(day_info.active_tz)
        if day_info.flights:
            boundary = day_info.flights[0]
            anchor = entry.start_time
            if entry.from_entry_id:
                origin = self._by_id.get(entry.from_entry_id)
                if origin is not None:
                    anchor = origin.start_time
            tz = self._side_of_boundary(anchor, boundary)
        return ResolvedZone(tz, tz, False)
