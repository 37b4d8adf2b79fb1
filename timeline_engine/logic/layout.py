import logging
from dataclasses import dataclass
from typing import Iterable, List, Tuple

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutSlot:
    entry_id: str
    column: int
    total_columns: int


def compute_overlap_layout(spans: Iterable[Tuple[str, float, float]]) -> List[LayoutSlot]:
    """
    Assign side-by-side columns to overlapping cards.

    `spans` are (entry_id, start, end) in any consistent unit. Cards are
    clustered by transitive overlap; inside a cluster each card takes the
    first column whose last card has already ended.
    """
    ordered = sorted(spans, key=lambda s: (s[1], s[2]))
    if not ordered:
        return []

    clusters: List[List[Tuple[str, float, float]]] = []
    current = [ordered[0]]
    cluster_end = ordered[0][2]
    for span in ordered[1:]:
        if span[1] < cluster_end:
            current.append(span)
            cluster_end = max(cluster_end, span[2])
        else:
            clusters.append(current)
            current = [span]
            cluster_end = span[2]
    clusters.append(current)

    slots: List[LayoutSlot] = []
    for cluster in clusters:
        columns: List[List[Tuple[str, float, float]]] = []
        for span in cluster:
            for column in columns:
                if span[1] >= column[-1][2]:
                    column.append(span)
                    break
            else:
                columns.append([span])

        for col, column in enumerate(columns):
            for span in column:
                slots.append(LayoutSlot(entry_id=span[0], column=col, total_columns=len(columns)))
    return slots
