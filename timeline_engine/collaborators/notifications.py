"""
Notification collaborator. Calls are fire-and-forget; nothing the engine does
depends on their outcome.
"""
import enum
import logging
from typing import Optional

log = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    conflict = "conflict"
    locked = "locked"
    snap_succeeded = "snap_succeeded"
    snap_failed = "snap_failed"
    trip_extended = "trip_extended"
    pushed = "pushed"


class Notifier:
    """Base sink: routes every notification through `emit`. Subclass to reach a UI."""

    def emit(self, kind: NotificationKind, message: str) -> None:
        raise NotImplementedError

    def conflict_count_changed(self, count: int) -> None:
        self.emit(NotificationKind.conflict, f"Time conflict ({count} entries) - drag to adjust")

    def locked_rejected(self, entry_id: str, entry_name: Optional[str] = None) -> None:
        self.emit(NotificationKind.locked, f"{entry_name or 'Entry'} is locked")

    def snap_succeeded(self, entry_id: str, entry_name: Optional[str] = None) -> None:
        self.emit(NotificationKind.snap_succeeded, f"Snapped {entry_name or 'entry'}")

    def snap_failed(self, entry_id: str, reason: str) -> None:
        self.emit(NotificationKind.snap_failed, f"Could not snap: {reason}")

    def pushed(self, entry_id: str, entry_name: Optional[str] = None) -> None:
        self.emit(NotificationKind.pushed, f"Pushed {entry_name or 'entry'} to make room")

    def trip_extended(self, label: str) -> None:
        self.emit(NotificationKind.trip_extended, f"Trip extended to {label}")


class LoggingNotifier(Notifier):
    def emit(self, kind: NotificationKind, message: str) -> None:
        level = logging.WARNING if kind in (NotificationKind.conflict, NotificationKind.locked,
                                            NotificationKind.snap_failed) else logging.INFO
        log.log(level, f"[{kind.value}] {message}")
