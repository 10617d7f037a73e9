"""Sheets: a JSON registry (relations/meta.json) plus one CSV file per sheet.

Every row mutation rewrites the whole CSV. The ``diary_refs`` column is a
convenience copy for people opening the file by hand; the relations index
is what reads trust.
"""

from __future__ import annotations

import csv
import io
import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from krecord.store.context import StoreContext
from krecord.store.errors import MalformedSheetError, RowNotFoundError, SheetNotFoundError
from krecord.store.models import RelationsMap, SheetDefinition, SheetMeta, SheetRow, SheetRowInput
from krecord.store.paths import random_suffix

if TYPE_CHECKING:
    from krecord.store.migration import MigrationNormalizer
    from krecord.store.relations import RelationsIndex

logger = logging.getLogger(__name__)

CSV_HEADERS = ("id", "date", "open", "high", "low", "close", "note", "diary_refs")
DEFAULT_SHEET_NAME = "Untitled"

# Notes have no length limit; the csv default is 128 KiB per field.
csv.field_size_limit(2**31 - 1)


# ── CSV ──────────────────────────────────────────────────


def parse_csv(text: str, strict: bool = False) -> tuple[list[str], list[dict[str, str]]]:
    """Header-driven parse. Short rows are padded with empty strings.

    Blank lines are skipped and every value is stripped. When the csv module
    cannot read a line, ``strict`` raises ``MalformedSheetError``; otherwise
    the rows read so far are returned with a warning.
    """
    lines: list[list[str]] = []
    try:
        for cells in csv.reader(io.StringIO(text)):
            if any(cell.strip() for cell in cells):
                lines.append(cells)
    except csv.Error as e:
        if strict:
            raise MalformedSheetError(f"unreadable CSV after {len(lines)} lines: {e}") from e
        logger.warning("Stopped reading malformed CSV after %d lines: %s", len(lines), e)

    if not lines:
        return list(CSV_HEADERS), []
    headers = [h.strip() for h in lines[0]]
    records = [
        {header: (cells[i].strip() if i < len(cells) else "") for i, header in enumerate(headers)}
        for cells in lines[1:]
    ]
    return headers, records


def stringify_csv(records: list[dict[str, str]], headers: list[str]) -> str:
    """Header line always present; fields quoted only when they need it."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=headers, lineterminator="\n", restval="", extrasaction="ignore")
    writer.writeheader()
    writer.writerows(records)
    return buf.getvalue()


def format_number(value: Any) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def parse_number(text: str | None, fallback: float = 0.0) -> float:
    if text is None or not text.strip():
        return fallback
    try:
        return float(text)
    except ValueError:
        return fallback


def split_refs(text: str | None) -> list[str]:
    if not text:
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


# ── Registry helpers ─────────────────────────────────────


def slugify_name(name: str) -> str:
    """Lowercase slug: runs of anything but ASCII letters, digits and CJK become '-'."""
    return re.sub(r"[^a-z0-9一-龥]+", "-", name.strip().lower()).strip("-")


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def normalize_meta(raw: Any, index: int) -> SheetMeta:
    """Fill the gaps in a hand-edited registry record."""
    data = raw if isinstance(raw, dict) else {}
    raw_id = str(data.get("id") or "").strip()
    fallback_key = raw_id.removeprefix("sheet-") or f"sheet-{index}"
    key = str(data.get("key") or "").strip() or fallback_key
    if key != Path(key).name or key in (".", ".."):
        key = slugify_name(key) or fallback_key
    name = str(data.get("name") or "").strip() or key
    return SheetMeta(
        id=raw_id or f"sheet-{key}",
        key=key,
        name=name,
        description=str(data.get("description") or ""),
    )


def row_to_record(row_id: str, data: SheetRowInput) -> dict[str, str]:
    return {
        "id": row_id,
        "date": data.date,
        "open": format_number(data.open),
        "high": format_number(data.high),
        "low": format_number(data.low),
        "close": format_number(data.close),
        "note": data.note or "",
        "diary_refs": ",".join(data.diary_refs or []),
    }


class SheetRepository:
    """Sheet registry and CSV row storage."""

    def __init__(
        self,
        context: StoreContext,
        relations: RelationsIndex,
        normalizer: MigrationNormalizer,
    ) -> None:
        self.context = context
        self.relations = relations
        self.normalizer = normalizer

    # ── Registry ─────────────────────────────────────────────

    def csv_path(self, meta: SheetMeta) -> Path:
        return self.context.paths.table_dir / f"{meta.key}.csv"

    def read_metas(self) -> list[SheetMeta]:
        """Registry records, normalized; missing CSV files are created empty."""
        self.normalizer.ensure_ready()
        self.context.ensure_base_files()
        parsed = self.context.read_json(self.context.paths.sheet_meta_file, [])
        if isinstance(parsed, dict):
            parsed = parsed.get("sheets", [])
        if not isinstance(parsed, list):
            logger.warning("Sheet registry is not a list, ignoring it")
            parsed = []
        metas = [normalize_meta(raw, i) for i, raw in enumerate(parsed)]
        for meta in metas:
            self._ensure_csv(meta)
        return metas

    def _write_metas(self, metas: list[SheetMeta]) -> None:
        self.context.write_json(self.context.paths.sheet_meta_file, [m.to_dict() for m in metas])

    def _ensure_csv(self, meta: SheetMeta) -> None:
        path = self.csv_path(meta)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(stringify_csv([], list(CSV_HEADERS)), encoding="utf-8")

    def _find_meta(self, metas: list[SheetMeta], sheet_id: str) -> int:
        for i, meta in enumerate(metas):
            if meta.id == sheet_id:
                return i
        raise SheetNotFoundError(sheet_id)

    def create_sheet(self, name: str, description: str = "") -> SheetDefinition:
        metas = self.read_metas()
        base_key = slugify_name(name) or f"sheet-{_base36(int(time.time() * 1000))}"
        existing = {m.key for m in metas}
        key = base_key
        while key in existing:
            key = f"{base_key}-{random_suffix()}"
        meta = SheetMeta(
            id=key if key.startswith("sheet-") else f"sheet-{key}",
            key=key,
            name=name.strip() or DEFAULT_SHEET_NAME,
            description=(description or "").strip(),
        )
        self._write_metas([*metas, meta])
        self._ensure_csv(meta)
        logger.info("Created sheet %s (%s)", meta.id, meta.name)
        return SheetDefinition(meta=meta, rows=[])

    def update_sheet(
        self, sheet_id: str, name: str | None = None, description: str | None = None
    ) -> SheetDefinition:
        metas = self.read_metas()
        meta = metas[self._find_meta(metas, sheet_id)]
        if name is not None and name.strip():
            meta.name = name.strip()
        if description is not None:
            meta.description = description.strip()
        self._write_metas(metas)
        logger.info("Updated sheet %s", sheet_id)
        return self._read_definition(meta, self.relations.read())

    def delete_sheet(self, sheet_id: str) -> None:
        """Remove the sheet's CSV and registry record, and every relation of its rows."""
        metas = self.read_metas()
        idx = self._find_meta(metas, sheet_id)
        meta = metas.pop(idx)
        path = self.csv_path(meta)
        row_ids = [row.id for row in self._read_definition(meta, RelationsMap()).rows]

        path.unlink(missing_ok=True)
        self._write_metas(metas)
        self.relations.remove_rows(row_ids)
        logger.info("Deleted sheet %s (%d rows)", sheet_id, len(row_ids))

    # ── Rows ─────────────────────────────────────────────────

    def _load(self, path: Path, strict: bool = False) -> tuple[list[str], list[dict[str, str]]]:
        """Headers and records of a sheet. Callers that rewrite the file pass ``strict``."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            text = ""
        headers, records = parse_csv(text, strict)
        headers += [h for h in CSV_HEADERS if h not in headers]
        return headers, records

    def _save(self, path: Path, headers: list[str], records: list[dict[str, str]]) -> None:
        path.write_text(stringify_csv(records, headers), encoding="utf-8")

    def _to_row(self, meta: SheetMeta, index: int, record: dict[str, str], relations: RelationsMap) -> SheetRow:
        row_id = record.get("id") or f"{meta.id}-row-{index}"
        opening = parse_number(record.get("open"))
        if row_id in relations.sheet_rows_to_diaries:
            refs = list(relations.sheet_rows_to_diaries[row_id])
        else:
            refs = split_refs(record.get("diary_refs"))
        return SheetRow(
            id=row_id,
            date=record.get("date", ""),
            open=opening,
            high=parse_number(record.get("high"), opening),
            low=parse_number(record.get("low"), opening),
            close=parse_number(record.get("close"), opening),
            note=record.get("note", ""),
            diary_refs=refs,
        )

    def _read_definition(self, meta: SheetMeta, relations: RelationsMap) -> SheetDefinition:
        _, records = self._load(self.csv_path(meta))
        rows = [self._to_row(meta, i, record, relations) for i, record in enumerate(records)]
        return SheetDefinition(meta=meta, rows=rows)

    def read_sheets(self) -> list[SheetDefinition]:
        metas = self.read_metas()
        relations = self.relations.read()
        return [self._read_definition(meta, relations) for meta in metas]

    def read_sheet(self, sheet_id: str) -> SheetDefinition:
        metas = self.read_metas()
        meta = metas[self._find_meta(metas, sheet_id)]
        return self._read_definition(meta, self.relations.read())

    def add_row(self, sheet_id: str, data: SheetRowInput) -> SheetRow:
        metas = self.read_metas()
        meta = metas[self._find_meta(metas, sheet_id)]
        path = self.csv_path(meta)
        headers, records = self._load(path, strict=True)
        row_id = data.id or f"{sheet_id}-row-{int(time.time() * 1000)}"
        records.append(row_to_record(row_id, data))
        self._save(path, headers, records)
        relations = self.relations.save_row_relations(row_id, data.diary_refs or [])
        logger.info("Added row %s to sheet %s", row_id, sheet_id)
        return self._to_row(meta, len(records) - 1, records[-1], relations)

    def update_row(self, sheet_id: str, row_id: str, data: SheetRowInput) -> SheetRow:
        metas = self.read_metas()
        meta = metas[self._find_meta(metas, sheet_id)]
        path = self.csv_path(meta)
        headers, records = self._load(path, strict=True)
        for i, record in enumerate(records):
            if record.get("id") == row_id:
                # Unknown columns a user added by hand survive the rewrite.
                records[i] = {**record, **row_to_record(row_id, data)}
                break
        else:
            raise RowNotFoundError(row_id)
        self._save(path, headers, records)
        relations = self.relations.save_row_relations(row_id, data.diary_refs or [])
        logger.info("Updated row %s in sheet %s", row_id, sheet_id)
        return self._to_row(meta, i, records[i], relations)

    def delete_row(self, sheet_id: str, row_id: str) -> None:
        metas = self.read_metas()
        meta = metas[self._find_meta(metas, sheet_id)]
        path = self.csv_path(meta)
        headers, records = self._load(path, strict=True)
        kept = [record for record in records if record.get("id") != row_id]
        if len(kept) == len(records):
            raise RowNotFoundError(row_id)
        self._save(path, headers, kept)
        self.relations.remove_row(row_id)
        logger.info("Deleted row %s from sheet %s", row_id, sheet_id)
