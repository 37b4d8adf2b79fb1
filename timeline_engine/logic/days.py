# timeline_engine/logic/days.py

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional

from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.logic.timezones import build_day_timezone_map, date_in_timezone, safe_zone
from timeline_engine.models import Day, Entry, Trip

log = logging.getLogger(__name__)


def trip_dates(trip: Trip, settings: Optional[Settings] = None) -> List[date]:
    """
    Calendar dates covered by the trip.
    Undated trips are laid out from a fixed reference date so that "Day k"
    still maps onto a concrete date.
    """
    settings = settings or default_settings
    if trip.is_dated:
        if trip.end_date is not None:
            end = max(trip.end_date, trip.start_date)
        else:
            end = trip.start_date + timedelta(days=max(1, trip.duration_days or 1) - 1)
        count = (end - trip.start_date).days + 1
        return [trip.start_date + timedelta(days=i) for i in range(count)]

    count = max(1, trip.duration_days or settings.DEFAULT_UNDATED_DAYS)
    return [settings.UNDATED_REFERENCE_DATE + timedelta(days=i) for i in range(count)]


def build_days(trip: Trip, entries: Iterable[Entry], settings: Optional[Settings] = None) -> List[Day]:
    settings = settings or default_settings
    dates = trip_dates(trip, settings)
    tz_map = build_day_timezone_map(dates, list(entries), trip.home_tz)
    days = []
    for i, d in enumerate(dates):
        label = d.strftime("%a %d %b") if trip.is_dated else f"Day {i + 1}"
        days.append(Day(index=i, date=d, label=label, tz_info=tz_map[d]))
    return days


@dataclass(frozen=True)
class TripExtension:
    end_date: Optional[date] = None
    duration_days: Optional[int] = None

    @property
    def label(self) -> str:
        if self.end_date is not None:
            return self.end_date.strftime("%a %d %b")
        return f"Day {self.duration_days}"


def compute_trip_extension(trip: Trip, entry_end: datetime, settings: Optional[Settings] = None) -> Optional[TripExtension]:
    """Return how far the trip has to grow for an entry ending at `entry_end`, or None."""
    settings = settings or default_settings
    reference = settings.UNDATED_REFERENCE_DATE

    if trip.is_dated:
        end_day = date_in_timezone(entry_end, trip.home_tz)
        if end_day >= reference:
            # Parked on the undated axis, not part of the dated trip
            return None
        current_end = trip_dates(trip, settings)[-1]
        if end_day > current_end:
            return TripExtension(end_date=end_day)
        return None

    ref_start = datetime.combine(reference, time.min, tzinfo=safe_zone(trip.home_tz))
    days_diff = math.floor((entry_end - ref_start.astimezone(timezone.utc)).total_seconds() / 86400) + 1
    if days_diff > (trip.duration_days or settings.DEFAULT_UNDATED_DAYS):
        return TripExtension(duration_days=days_diff)
    return None
