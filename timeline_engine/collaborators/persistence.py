"""
Persistence collaborator.

The engine only ever reads entries (with their primary option) and writes
start/end/lock. `EntryStore` is that contract; `SqlEntryStore` implements it
on SQLAlchemy.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker

from timeline_engine.db import get_db_session
from timeline_engine.models import Entry, EntryOption, IntervalChange, LinkedType, ensure_utc

log = logging.getLogger(__name__)


class EntryStore(Protocol):
    def read_entries(self, trip_id: str) -> List[Entry]: ...

    def update_entry_interval(self, entry_id: str, start: datetime, end: datetime) -> None: ...


# ─── Schema ─────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


class EntryRecord(Base):
    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    trip_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_scheduled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    linked_flight_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    linked_type: Mapped[LinkedType] = mapped_column(Enum(LinkedType), default=LinkedType.none, nullable=False)
    from_entry_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    to_entry_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    options: Mapped[List["EntryOptionRecord"]] = relationship(
        "EntryOptionRecord", back_populates="entry", order_by="EntryOptionRecord.id", cascade="all, delete-orphan"
    )


class EntryOptionRecord(Base):
    __tablename__ = "entry_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(ForeignKey("entries.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, default="", nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    departure_tz: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    arrival_tz: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    departure_location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    arrival_location: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    entry: Mapped["EntryRecord"] = relationship("EntryRecord", back_populates="options")


def _to_entry(record: EntryRecord) -> Entry:
    primary = record.options[0] if record.options else None
    option = None
    if primary is not None:
        option = EntryOption(
            name=primary.name,
            category=primary.category,
            departure_tz=primary.departure_tz,
            arrival_tz=primary.arrival_tz,
            location_name=primary.location_name,
            address=primary.address,
            departure_location=primary.departure_location,
            arrival_location=primary.arrival_location,
        )
    return Entry(
        id=record.id,
        trip_id=record.trip_id,
        start_time=record.start_time,
        end_time=record.end_time,
        is_locked=record.is_locked,
        is_scheduled=record.is_scheduled,
        linked_flight_id=record.linked_flight_id,
        linked_type=record.linked_type,
        from_entry_id=record.from_entry_id,
        to_entry_id=record.to_entry_id,
        option=option,
    )


class SqlEntryStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def read_entries(self, trip_id: str) -> List[Entry]:
        with get_db_session(self.session_factory) as db:
            stmt = (
                select(EntryRecord)
                .where(EntryRecord.trip_id == trip_id)
                .options(selectinload(EntryRecord.options))
                .order_by(EntryRecord.start_time)
            )
            records = db.execute(stmt).scalars().all()
            return [_to_entry(r) for r in records]

    def update_entry_interval(self, entry_id: str, start: datetime, end: datetime) -> None:
        with get_db_session(self.session_factory) as db:
            record = db.get(EntryRecord, entry_id)
            if record is None:
                raise LookupError(f"Entry {entry_id} not found")
            record.start_time = ensure_utc(start)
            record.end_time = ensure_utc(end)
        log.debug(f"Entry {entry_id} -> [{start.isoformat()}, {end.isoformat()}]")

    def set_locked(self, entry_id: str, locked: bool) -> None:
        with get_db_session(self.session_factory) as db:
            record = db.get(EntryRecord, entry_id)
            if record is None:
                raise LookupError(f"Entry {entry_id} not found")
            record.is_locked = locked

    def add_entries(self, entries: Iterable[Entry]) -> None:
        """Insert entries with their primary option. Used to seed a trip."""
        with get_db_session(self.session_factory) as db:
            for e in entries:
                record = EntryRecord(
                    id=e.id,
                    trip_id=e.trip_id or "",
                    start_time=e.start_time,
                    end_time=e.end_time,
                    is_locked=e.is_locked,
                    is_scheduled=e.is_scheduled,
                    linked_flight_id=e.linked_flight_id,
                    linked_type=e.linked_type,
                    from_entry_id=e.from_entry_id,
                    to_entry_id=e.to_entry_id,
                )
                if e.option is not None:
                    record.options.append(EntryOptionRecord(**e.option.model_dump()))
                db.add(record)


# ─── Batch writes ───────────────────────────────────────────────────

@dataclass
class BatchResult:
    applied: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def apply_batch(store: EntryStore, changes: Iterable[IntervalChange]) -> BatchResult:
    """
    Issue every write of a plan. Writes are independent: one failure is
    logged and recorded, the rest are still attempted.
    """
    result = BatchResult()
    for change in changes:
        try:
            store.update_entry_interval(change.entry_id, change.new_start, change.new_end)
            result.applied.append(change.entry_id)
        except Exception as e:
            log.error(f"Failed to persist interval for {change.entry_id} ({change.reason}): {e}", exc_info=True)
            result.failed[change.entry_id] = str(e)
    if result.failed:
        log.warning(f"Batch finished with {len(result.failed)} failed write(s) out of {len(result.applied) + len(result.failed)}")
    return result
