import logging
from dataclasses import dataclass, field
from typing import List, Optional

from timeline_engine.models import IntervalChange

log = logging.getLogger(__name__)


@dataclass
class HistoryAction:
    description: str
    changes: List[IntervalChange] = field(default_factory=list)

    def undo_changes(self) -> List[IntervalChange]:
        return [c.inverted() for c in self.changes]

    def redo_changes(self) -> List[IntervalChange]:
        return list(self.changes)


class UndoHistory:
    """Linear undo/redo stack of committed interval batches. A new push clears redo."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._past: List[HistoryAction] = []
        self._future: List[HistoryAction] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    def push(self, description: str, changes: List[IntervalChange]) -> Optional[HistoryAction]:
        if not changes:
            return None
        action = HistoryAction(description, list(changes))
        self._past.append(action)
        if len(self._past) > self.limit:
            self._past.pop(0)
        self._future.clear()
        return action

    def undo(self) -> Optional[HistoryAction]:
        if not self._past:
            return None
        action = self._past.pop()
        self._future.append(action)
        log.info(f"Undo: {action.description}")
        return action

    def redo(self) -> Optional[HistoryAction]:
        if not self._future:
            return None
        action = self._future.pop()
        self._past.append(action)
        log.info(f"Redo: {action.description}")
        return action
