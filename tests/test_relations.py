"""Tests for the row <-> diary relations index."""

from __future__ import annotations

import json

import pytest
from pathlib import Path

from krecord.store.context import StoreContext
from krecord.store.models import RelationsMap
from krecord.store.relations import RelationsIndex


@pytest.fixture
def index(tmp_path: Path) -> RelationsIndex:
    return RelationsIndex(StoreContext(tmp_path))


class TestRead:
    def test_creates_empty_file(self, index: RelationsIndex):
        relations = index.read()
        assert relations == RelationsMap()
        data = json.loads(index.path.read_text(encoding="utf-8"))
        assert data == {"sheetRowsToDiaries": {}, "diariesToSheets": {}}

    def test_malformed_json_reads_as_empty(self, index: RelationsIndex):
        index.path.parent.mkdir(parents=True)
        index.path.write_text("{not json", encoding="utf-8")
        assert index.read() == RelationsMap()

    def test_diaries_for_unknown_row(self, index: RelationsIndex):
        assert index.diaries_for_row("row-x") is None


class TestSaveRowRelations:
    def test_links_both_ways(self, index: RelationsIndex):
        relations = index.save_row_relations("row-1", ["diary-a", "diary-b"])
        assert relations.sheet_rows_to_diaries == {"row-1": ["diary-a", "diary-b"]}
        assert relations.diaries_to_sheets == {"diary-a": ["row-1"], "diary-b": ["row-1"]}
        assert index.diaries_for_row("row-1") == ["diary-a", "diary-b"]
        assert index.rows_for_diary("diary-a") == ["row-1"]

    def test_dedupes_and_drops_empty(self, index: RelationsIndex):
        relations = index.save_row_relations("row-1", ["diary-a", "", "diary-a", "diary-b"])
        assert relations.sheet_rows_to_diaries["row-1"] == ["diary-a", "diary-b"]

    def test_idempotent(self, index: RelationsIndex):
        index.save_row_relations("row-1", ["diary-a"])
        before = index.path.read_text(encoding="utf-8")
        index.save_row_relations("row-1", ["diary-a"])
        assert index.path.read_text(encoding="utf-8") == before

    def test_dropped_diary_loses_reverse_link(self, index: RelationsIndex):
        index.save_row_relations("row-1", ["diary-a", "diary-b"])
        index.save_row_relations("row-2", ["diary-b"])
        relations = index.save_row_relations("row-1", ["diary-b"])
        assert "diary-a" not in relations.diaries_to_sheets
        assert relations.diaries_to_sheets["diary-b"] == ["row-1", "row-2"]
        assert relations.is_symmetric()

    def test_repairs_reverse_only_link(self, index: RelationsIndex):
        index.write(RelationsMap(diaries_to_sheets={"diary-z": ["row-1"]}))
        relations = index.save_row_relations("row-1", ["diary-a"])
        assert relations.is_symmetric()
        assert "diary-z" not in relations.diaries_to_sheets

    def test_empty_list_keeps_row_key(self, index: RelationsIndex):
        index.save_row_relations("row-1", ["diary-a"])
        relations = index.save_row_relations("row-1", [])
        assert relations.sheet_rows_to_diaries == {"row-1": []}
        assert relations.diaries_to_sheets == {}


class TestRemove:
    def test_remove_row(self, index: RelationsIndex):
        index.save_row_relations("row-1", ["diary-a"])
        index.save_row_relations("row-2", ["diary-a"])
        relations = index.remove_row("row-1")
        assert "row-1" not in relations.sheet_rows_to_diaries
        assert relations.diaries_to_sheets == {"diary-a": ["row-2"]}

    def test_remove_rows_cleans_reverse_only_entries(self, index: RelationsIndex):
        index.write(RelationsMap(diaries_to_sheets={"diary-a": ["row-1", "row-9"]}))
        relations = index.remove_rows(["row-1", "row-9"])
        assert relations == RelationsMap()

    def test_remove_diary_keeps_rows(self, index: RelationsIndex):
        index.save_row_relations("row-1", ["diary-a", "diary-b"])
        index.save_row_relations("row-2", ["diary-a"])
        relations = index.remove_diary("diary-a")
        assert relations.sheet_rows_to_diaries == {"row-1": ["diary-b"], "row-2": []}
        assert relations.diaries_to_sheets == {"diary-b": ["row-1"]}
        assert relations.is_symmetric()


class TestMerge:
    def test_union_and_rebuild(self, index: RelationsIndex):
        index.save_row_relations("row-1", ["diary-a"])
        legacy = RelationsMap(
            sheet_rows_to_diaries={"row-1": ["diary-b"]},
            diaries_to_sheets={"diary-c": ["row-2"]},
        )
        relations = index.merge(legacy)
        assert relations.sheet_rows_to_diaries == {"row-1": ["diary-a", "diary-b"], "row-2": ["diary-c"]}
        assert relations.is_symmetric()
        assert index.read() == relations


class TestRelationsMap:
    def test_from_dict_ignores_junk(self):
        relations = RelationsMap.from_dict({"sheetRowsToDiaries": {"r": ["d", None, ""]}, "diariesToSheets": "x"})
        assert relations.sheet_rows_to_diaries == {"r": ["d"]}
        assert relations.diaries_to_sheets == {}

    def test_round_trip_shape(self):
        relations = RelationsMap(sheet_rows_to_diaries={"r": ["d"]}, diaries_to_sheets={"d": ["r"]})
        assert RelationsMap.from_dict(relations.to_dict()) == relations
