"""
Column/label mapping for board and issue synchronization.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .models import ColumnMapping, IssueState


class MappingResolver:
    """Translates between board columns and remote label sets.

    Lookups by column are keyed by column id. Resolving an issue to a column
    picks the mapping whose labels overlap the issue's labels the most; equal
    overlaps go to the mapping declared first.
    """

    def __init__(self, mappings: Sequence[ColumnMapping]) -> None:
        self.mappings: list[ColumnMapping] = list(mappings)
        self._by_column: dict[str, ColumnMapping] = {}
        for mapping in self.mappings:
            self._by_column.setdefault(mapping.column_id, mapping)
        self.vocabulary: frozenset[str] = frozenset(label for m in self.mappings for label in m.labels)

    def mapping_for(self, column_id: str) -> ColumnMapping | None:
        return self._by_column.get(column_id)

    def is_mapped(self, column_id: str) -> bool:
        return column_id in self._by_column

    def labels_for_column(self, column_id: str) -> frozenset[str]:
        mapping = self._by_column.get(column_id)
        return frozenset(mapping.labels) if mapping else frozenset()

    def state_for_column(self, column_id: str) -> IssueState | None:
        mapping = self._by_column.get(column_id)
        return mapping.issue_state if mapping else None

    def free_labels(self, labels: Iterable[str]) -> frozenset[str]:
        """Labels that carry no column meaning."""
        return frozenset(labels) - self.vocabulary

    def remote_labels_for(self, column_id: str, card_labels: Iterable[str]) -> frozenset[str]:
        """Label set an issue should carry for a card sitting in ``column_id``."""
        return self.free_labels(card_labels) | self.labels_for_column(column_id)

    def resolve_column(self, labels: Iterable[str], state: IssueState | None = None) -> str | None:
        """Return the column id an issue with ``labels`` belongs in, or None if unmapped.

        Without any overlapping labels, an issue still lands in the first
        label-less mapping whose target state equals ``state``.
        """
        best = self._best_overlap(self.mappings, frozenset(labels))
        if best is not None:
            return best.column_id
        if state is not None:
            for mapping in self.mappings:
                if not mapping.labels and mapping.issue_state == state:
                    return mapping.column_id
        return None

    def column_for_state(self, labels: Iterable[str], state: IssueState) -> str | None:
        """Best column among the mappings that target ``state``."""
        candidates = [m for m in self.mappings if m.issue_state == state]
        if not candidates:
            return None
        best = self._best_overlap(candidates, frozenset(labels))
        return (best or candidates[0]).column_id

    @staticmethod
    def _best_overlap(mappings: Sequence[ColumnMapping], labels: frozenset[str]) -> ColumnMapping | None:
        best: ColumnMapping | None = None
        best_size = 0
        for mapping in mappings:
            size = len(labels.intersection(mapping.labels))
            # Strictly greater keeps the earlier declaration on ties.
            if size > best_size:
                best, best_size = mapping, size
        return best
