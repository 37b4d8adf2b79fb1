# timeline_engine/logic/blocks.py

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional

from timeline_engine.config import Settings, settings as default_settings
from timeline_engine.models import Entry


@dataclass
class Block:
    """A run of scheduled entries with no gap between neighbours (within tolerance)."""
    entries: List[Entry] = field(default_factory=list)

    @property
    def transports(self) -> List[Entry]:
        return [e for e in self.entries if e.is_transport]

    @property
    def events(self) -> List[Entry]:
        return [e for e in self.entries if not e.is_transport]

    @property
    def has_locked_entry(self) -> bool:
        return any(e.is_locked for e in self.entries)


def get_block(entry_id: str, entries: Iterable[Entry], settings: Optional[Settings] = None) -> Block:
    settings = settings or default_settings
    tolerance = timedelta(minutes=settings.BLOCK_GAP_TOLERANCE_MINUTES)
    ordered = sorted((e for e in entries if e.is_scheduled), key=lambda e: e.start_time)

    idx = next((i for i, e in enumerate(ordered) if e.id == entry_id), None)
    if idx is None:
        return Block()

    first = idx
    while first > 0 and ordered[first].start_time - ordered[first - 1].end_time <= tolerance:
        first -= 1

    last = idx
    while last + 1 < len(ordered) and ordered[last + 1].start_time - ordered[last].end_time <= tolerance:
        last += 1

    return Block(entries=ordered[first:last + 1])


def block_has_locked_entry(block: Block) -> bool:
    return block.has_locked_entry


def entries_after_in_block(entry_id: str, block: Block) -> List[Entry]:
    for i, e in enumerate(block.entries):
        if e.id == entry_id:
            return block.entries[i + 1:]
    return []
