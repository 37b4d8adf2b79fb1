"""Failure taxonomy for the scheduling engine."""
from typing import Optional


class TimelineError(Exception):
    """Base class for all engine errors."""


class TimezoneResolutionError(TimelineError):
    """An IANA zone name could not be resolved."""

    def __init__(self, tz_name: Optional[str]):
        self.tz_name = tz_name
        super().__init__(f"Invalid timezone identifier: {tz_name!r}")


class LockedEntryViolation(TimelineError):
    """A drag, resize or snap targeted a locked entry."""

    def __init__(self, entry_id: str, entry_name: Optional[str] = None):
        self.entry_id = entry_id
        self.entry_name = entry_name
        super().__init__(f"{entry_name or 'Entry'} is locked")


class DegenerateInterval(TimelineError):
    """An interval would end before it starts or fall below the minimum duration."""

    def __init__(self, entry_id: str, minutes: float):
        self.entry_id = entry_id
        self.minutes = minutes
        super().__init__(f"Interval for {entry_id} would last {minutes:.1f} min")


class RoutingUnavailable(TimelineError):
    """The routing collaborator failed or returned nothing usable."""


class CascadeTargetMissing(TimelineError):
    """A link points at an entry that is no longer in the snapshot."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Linked entry {entry_id} not found")
