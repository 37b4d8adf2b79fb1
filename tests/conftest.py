from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from timeline_engine.config import Settings
from timeline_engine.logic.coordinates import GlobalCoordinateMapper
from timeline_engine.logic.days import build_days
from timeline_engine.logic.timezones import TimeZoneResolver
from timeline_engine.models import Entry, EntryOption, Trip

ORIGIN_TZ = "Atlantic/Reykjavik"  # UTC+0 all year
DEST_TZ = "Europe/Moscow"         # UTC+3 all year


def utc(day, hour, minute=0, month=3, year=2025):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_entry(entry_id, start, end, name=None, category=None, **kwargs):
    option_fields = {
        k: kwargs.pop(k)
        for k in ("departure_tz", "arrival_tz", "address", "location_name", "departure_location", "arrival_location")
        if k in kwargs
    }
    option = EntryOption(name=name or entry_id, category=category, **option_fields)
    return Entry(id=entry_id, trip_id="trip-1", start_time=start, end_time=end, option=option, **kwargs)


def make_flight(entry_id, start, end, dep=ORIGIN_TZ, arr=DEST_TZ, **kwargs):
    return make_entry(entry_id, start, end, name=f"Flight {entry_id}", category="flight",
                      departure_tz=dep, arrival_tz=arr, **kwargs)


def make_mapper(trip, entries, settings=None):
    settings = settings or Settings()
    days = build_days(trip, entries, settings)
    resolver = TimeZoneResolver({d.date: d.tz_info for d in days}, trip.home_tz, entries)
    return GlobalCoordinateMapper(days, resolver, settings)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def trip():
    return Trip(id="trip-1", home_tz="UTC", start_date=date(2025, 3, 1), end_date=date(2025, 3, 3))


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def flight_group_entries():
    """Flight 10:00-14:00 UTC on day 2 with a 2h check-in and a 30 min check-out."""
    flight = make_flight("fl", utc(2, 10), utc(2, 14))
    checkin = make_entry("ci", utc(2, 8), utc(2, 10), category="airport_processing",
                         linked_flight_id="fl", linked_type="checkin")
    checkout = make_entry("co", utc(2, 14), utc(2, 14, 30), category="airport_processing",
                          linked_flight_id="fl", linked_type="checkout")
    return [checkin, flight, checkout]
