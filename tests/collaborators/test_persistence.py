from unittest.mock import MagicMock

import pytest

from conftest import make_entry, utc
from timeline_engine.collaborators.persistence import EntryRecord, SqlEntryStore, apply_batch
from timeline_engine.db import get_db_session, init_db, make_engine, make_session_factory
from timeline_engine.models import IntervalChange, KindTag, LinkedType


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory, flight_group_entries):
    store = SqlEntryStore(session_factory)
    store.add_entries(flight_group_entries + [
        make_entry("dinner", utc(2, 16), utc(2, 17), address="3 Main St"),
        make_entry("other-trip", utc(2, 9), utc(2, 10)).model_copy(update={"trip_id": "trip-2"}),
    ])
    return store


def test_read_entries_round_trips_option_and_links(store):
    entries = store.read_entries("trip-1")
    assert [e.id for e in entries] == ["ci", "fl", "co", "dinner"]

    flight = entries[1]
    assert flight.kind.tag == KindTag.flight
    assert flight.option.arrival_tz == "Europe/Moscow"
    assert flight.start_time == utc(2, 10)
    assert entries[0].linked_type == LinkedType.checkin
    assert entries[3].option.address == "3 Main St"


def test_update_interval(store):
    store.update_entry_interval("dinner", utc(2, 18), utc(2, 19, 30))
    dinner = next(e for e in store.read_entries("trip-1") if e.id == "dinner")
    assert (dinner.start_time, dinner.end_time) == (utc(2, 18), utc(2, 19, 30))


def test_update_missing_entry_raises(store):
    with pytest.raises(LookupError):
        store.update_entry_interval("ghost", utc(2, 18), utc(2, 19))


def test_set_locked(store):
    store.set_locked("dinner", True)
    assert next(e for e in store.read_entries("trip-1") if e.id == "dinner").is_locked


def test_session_rolls_back_on_error(session_factory, store):
    with pytest.raises(RuntimeError):
        with get_db_session(session_factory) as db:
            db.get(EntryRecord, "dinner").is_locked = True
            raise RuntimeError("boom")
    assert not next(e for e in store.read_entries("trip-1") if e.id == "dinner").is_locked


def test_apply_batch_keeps_going_after_failure():
    store = MagicMock()
    store.update_entry_interval.side_effect = [None, LookupError("gone"), None]
    changes = [
        IntervalChange(eid, utc(1, 9), utc(1, 10), utc(1, 10), utc(1, 11))
        for eid in ("a", "b", "c")
    ]
    result = apply_batch(store, changes)

    assert result.applied == ["a", "c"]
    assert result.failed == {"b": "gone"}
    assert not result.ok
    assert store.update_entry_interval.call_count == 3
