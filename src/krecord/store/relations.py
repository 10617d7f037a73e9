"""Bidirectional row <-> diary index persisted as relations/relations.json.

Both directions are stored so either side can be looked up without a scan.
Every mutation rewrites the whole file and leaves the two directions mirror
images of each other for every id it touched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from krecord.store.context import StoreContext
from krecord.store.models import RelationsMap

logger = logging.getLogger(__name__)


def _dedupe(ids: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for item in ids:
        if item and item not in seen:
            seen.append(item)
    return seen


class RelationsIndex:
    def __init__(self, context: StoreContext) -> None:
        self.context = context

    @property
    def path(self) -> Path:
        return self.context.paths.relations_file

    def read(self) -> RelationsMap:
        self.context.ensure_base_files()
        return RelationsMap.from_dict(self.context.read_json(self.path, {}))

    def write(self, relations: RelationsMap) -> None:
        self.context.write_json(self.path, relations.to_dict())

    def diaries_for_row(self, row_id: str) -> list[str] | None:
        """Linked diary ids, or None when the index has no entry for the row."""
        relations = self.read()
        if row_id not in relations.sheet_rows_to_diaries:
            return None
        return list(relations.sheet_rows_to_diaries[row_id])

    def rows_for_diary(self, diary_id: str) -> list[str]:
        return list(self.read().diaries_to_sheets.get(diary_id, []))

    def save_row_relations(self, row_id: str, diary_ids: Iterable[str]) -> RelationsMap:
        """Replace a row's diary links and mirror the change on the diary side."""
        relations = self.read()
        wanted = _dedupe(diary_ids)
        # Diaries dropped from the row, including reverse links the forward side lost.
        stale = set(relations.sheet_rows_to_diaries.get(row_id, []))
        stale |= {d for d, rows in relations.diaries_to_sheets.items() if row_id in rows}
        relations.sheet_rows_to_diaries[row_id] = wanted

        for diary_id in sorted(stale - set(wanted)):
            self._unlink(relations, diary_id, row_id)

        for diary_id in wanted:
            rows = relations.diaries_to_sheets.setdefault(diary_id, [])
            if row_id not in rows:
                rows.append(row_id)

        self.write(relations)
        return relations

    def remove_row(self, row_id: str) -> RelationsMap:
        return self.remove_rows([row_id])

    def remove_rows(self, row_ids: Iterable[str]) -> RelationsMap:
        """Drop rows from the index along with every reverse link to them."""
        relations = self.read()
        doomed = set(row_ids)
        for row_id in doomed:
            for diary_id in relations.sheet_rows_to_diaries.pop(row_id, []):
                self._unlink(relations, diary_id, row_id)
        # Reverse entries the forward side never knew about.
        for diary_id in list(relations.diaries_to_sheets):
            for row_id in doomed & set(relations.diaries_to_sheets[diary_id]):
                self._unlink(relations, diary_id, row_id)
        self.write(relations)
        return relations

    def remove_diary(self, diary_id: str) -> RelationsMap:
        """Forget a diary. Rows that pointed at it stay, minus the link."""
        relations = self.read()
        relations.diaries_to_sheets.pop(diary_id, None)
        for row_id, diary_ids in relations.sheet_rows_to_diaries.items():
            if diary_id in diary_ids:
                relations.sheet_rows_to_diaries[row_id] = [d for d in diary_ids if d != diary_id]
        self.write(relations)
        logger.info("Pruned diary %s from relations", diary_id)
        return relations

    def merge(self, other: RelationsMap) -> RelationsMap:
        """Union another map's links into this one and rebuild the reverse side."""
        relations = self.read()
        for row_id, diary_id in sorted(relations.pairs() | other.pairs()):
            rows = relations.sheet_rows_to_diaries.setdefault(row_id, [])
            if diary_id not in rows:
                rows.append(diary_id)
        relations.rebuild_reverse()
        self.write(relations)
        return relations

    @staticmethod
    def _unlink(relations: RelationsMap, diary_id: str, row_id: str) -> None:
        remaining = [r for r in relations.diaries_to_sheets.get(diary_id, []) if r != row_id]
        if remaining:
            relations.diaries_to_sheets[diary_id] = remaining
        else:
            relations.diaries_to_sheets.pop(diary_id, None)
