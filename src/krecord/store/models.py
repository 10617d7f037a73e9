"""Records stored on disk: diary entries, sheets, rows and the relations map."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class _Unset:
    """Marker for "field not provided" in partial updates."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

# Frontmatter keys owned by DiaryEntry; anything else lands in DiaryEntry.extra.
FRONTMATTER_KEYS = ("id", "title", "tags", "attachments", "occurredAt", "parentId", "cover", "mood")


@dataclass
class DiaryEntry:
    """One markdown file under content/."""

    id: str
    title: str
    content: str
    occurred_at: str
    tags: list[str] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)
    parent_id: str | None = None
    cover: str | None = None
    mood: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_child(self) -> bool:
        return bool(self.parent_id)

    def frontmatter(self) -> dict[str, Any]:
        """Metadata in on-disk key order; optional keys only when set."""
        meta: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "tags": list(self.tags),
            "attachments": list(self.attachments),
            "occurredAt": self.occurred_at,
            "parentId": self.parent_id,
        }
        if self.cover:
            meta["cover"] = self.cover
        if self.mood:
            meta["mood"] = self.mood
        for key, value in self.extra.items():
            if key not in meta:
                meta[key] = value
        return meta

    def to_dict(self) -> dict[str, Any]:
        data = self.frontmatter()
        data["content"] = self.content
        return data


@dataclass
class DiaryInput:
    """Fields accepted by DiaryRepository.append."""

    title: str
    content: str = ""
    id: str | None = None
    tags: list[str] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)
    occurred_at: Any = None
    parent_id: str | None = None
    cover: str | None = None
    mood: str | None = None


@dataclass
class DiaryPatch:
    """Partial update. UNSET leaves a field alone; None clears parent_id, cover and mood."""

    title: Any = UNSET
    content: Any = UNSET
    tags: Any = UNSET
    attachments: Any = UNSET
    occurred_at: Any = UNSET
    parent_id: Any = UNSET
    cover: Any = UNSET
    mood: Any = UNSET


@dataclass
class SheetMeta:
    id: str
    key: str
    name: str
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "key": self.key, "name": self.name, "description": self.description}


@dataclass
class SheetRow:
    id: str
    date: str
    open: float
    high: float
    low: float
    close: float
    note: str = ""
    diary_refs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "note": self.note,
            "diaryRefs": list(self.diary_refs),
        }


@dataclass
class SheetRowInput:
    date: str
    open: float
    high: float
    low: float
    close: float
    note: str = ""
    diary_refs: list[str] = field(default_factory=list)
    id: str | None = None


@dataclass
class SheetDefinition:
    """A sheet's registry record together with its rows."""

    meta: SheetMeta
    rows: list[SheetRow] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def key(self) -> str:
        return self.meta.key

    @property
    def name(self) -> str:
        return self.meta.name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = self.meta.to_dict()
        data["rows"] = [row.to_dict() for row in self.rows]
        return data


@dataclass
class RelationsMap:
    """Row -> diaries and diary -> rows, kept mirror images of each other."""

    sheet_rows_to_diaries: dict[str, list[str]] = field(default_factory=dict)
    diaries_to_sheets: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> RelationsMap:
        if not isinstance(data, dict):
            return cls()
        return cls(
            sheet_rows_to_diaries=_clean_mapping(data.get("sheetRowsToDiaries")),
            diaries_to_sheets=_clean_mapping(data.get("diariesToSheets")),
        )

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            "sheetRowsToDiaries": self.sheet_rows_to_diaries,
            "diariesToSheets": self.diaries_to_sheets,
        }

    def pairs(self) -> set[tuple[str, str]]:
        """Every (row_id, diary_id) link, from either direction."""
        found = {(row, diary) for row, diaries in self.sheet_rows_to_diaries.items() for diary in diaries}
        found |= {(row, diary) for diary, rows in self.diaries_to_sheets.items() for row in rows}
        return found

    def is_symmetric(self) -> bool:
        forward = {(r, d) for r, ds in self.sheet_rows_to_diaries.items() for d in ds}
        backward = {(r, d) for d, rs in self.diaries_to_sheets.items() for r in rs}
        return forward == backward

    def rebuild_reverse(self) -> None:
        """Recompute diaries_to_sheets from sheet_rows_to_diaries."""
        reverse: dict[str, list[str]] = {}
        for row_id, diary_ids in self.sheet_rows_to_diaries.items():
            for diary_id in diary_ids:
                rows = reverse.setdefault(diary_id, [])
                if row_id not in rows:
                    rows.append(row_id)
        self.diaries_to_sheets = reverse


def _clean_mapping(value: Any) -> dict[str, list[str]]:
    if not isinstance(value, dict):
        return {}
    cleaned: dict[str, list[str]] = {}
    for key, items in value.items():
        if isinstance(items, list):
            cleaned[str(key)] = [str(item) for item in items if item]
    return cleaned
