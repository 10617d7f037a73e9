"""Canonical on-disk locations, date/id resolution and the file move primitive.

Diary entries live at ``content/<YYYY>/<YYYYMM>/<YYYYMMDD>/[children/]<slug>.md``.
Every day directory carries the ``children/ imgs/ video/ files/`` skeleton so
uploads always have a destination.
"""

from __future__ import annotations

import logging
import os
import random
import re
import shutil
import string
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from krecord.store.assets import ASSET_DIRS, classify_asset_dir

logger = logging.getLogger(__name__)

CHILDREN_DIR = "children"
LEGACY_DATE_RE = re.compile(r"(\d{4})[-/]?(\d{2})[-/]?(\d{2})")
_SLUG_STRIP_RE = re.compile(r"[^a-zA-Z0-9一-龥]+")
_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class StorePaths:
    """Every fixed location under a data root, including the legacy ones."""

    root: Path
    content_dir: Path
    table_dir: Path
    relations_dir: Path
    relations_file: Path
    sheet_meta_file: Path
    legacy_diaries_dir: Path
    legacy_post_dir: Path
    legacy_assets_dir: Path
    legacy_relations_file: Path
    legacy_meta_file: Path

    @classmethod
    def from_root(cls, root: Path) -> StorePaths:
        root = Path(root)
        relations_dir = root / "relations"
        return cls(
            root=root,
            content_dir=root / "content",
            table_dir=root / "table",
            relations_dir=relations_dir,
            relations_file=relations_dir / "relations.json",
            sheet_meta_file=relations_dir / "meta.json",
            legacy_diaries_dir=root / "dailyReport",
            legacy_post_dir=root / "content" / "post",
            legacy_assets_dir=root / "assets",
            legacy_relations_file=root / "relations.json",
            legacy_meta_file=root / "table" / "meta.json",
        )

    def relative(self, path: Path) -> str:
        """Root-relative path with forward slashes."""
        return Path(os.path.relpath(path, self.root)).as_posix()


@dataclass(frozen=True)
class DiaryFile:
    path: Path
    is_child: bool


# ── Instants ──────────────────────────────────────────────


def parse_instant(raw: Any) -> datetime | None:
    """Best-effort parse into an aware UTC datetime. Naive values are read as UTC."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return raw.replace(tzinfo=timezone.utc) if raw.tzinfo is None else raw.astimezone(timezone.utc)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)
    if isinstance(raw, (int, float)):
        # Epoch milliseconds.
        try:
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    try:
        return parse_instant(datetime.fromisoformat(text))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d", "%Y/%m/%d %H:%M", "%Y/%m/%d %H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def format_instant(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. ``2024-03-05T08:00:00.000Z``."""
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _midnight(year: int, month: int, day: int) -> datetime | None:
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


# ── occurredAt resolvers ──────────────────────────────────
# Each takes (raw frontmatter value, root-relative path) and returns an instant or None.

OccurredAtResolver = Callable[[Any, PurePosixPath | None], datetime | None]


def occurred_at_from_value(raw: Any, relative: PurePosixPath | None) -> datetime | None:
    return parse_instant(raw)


def occurred_at_from_day_dirs(raw: Any, relative: PurePosixPath | None) -> datetime | None:
    """Read the date from a ``YYYY/YYYYMM/YYYYMMDD`` run of folder names."""
    if relative is None:
        return None
    parts = relative.parts
    for i in range(len(parts) - 2):
        year, month_key, day_key = parts[i : i + 3]
        if (
            len(year) == 4
            and len(month_key) == 6
            and len(day_key) == 8
            and (year + month_key + day_key).isdigit()
            and month_key.startswith(year)
            and day_key.startswith(month_key)
        ):
            found = _midnight(int(year), int(month_key[4:]), int(day_key[6:]))
            if found:
                return found
    return None


def occurred_at_from_path_digits(raw: Any, relative: PurePosixPath | None) -> datetime | None:
    """First valid ``YYYY[-/]MM[-/]DD`` digit run anywhere in the path."""
    if relative is None:
        return None
    text = relative.as_posix()
    for start in range(len(text)):
        match = LEGACY_DATE_RE.match(text, start)
        if not match:
            continue
        found = _midnight(*(int(group) for group in match.groups()))
        if found:
            return found
    return None


def occurred_at_now(raw: Any, relative: PurePosixPath | None) -> datetime | None:
    return utc_now()


OCCURRED_AT_RESOLVERS: tuple[OccurredAtResolver, ...] = (
    occurred_at_from_value,
    occurred_at_from_day_dirs,
    occurred_at_from_path_digits,
    occurred_at_now,
)

# Legacy folders never used the YYYY/YYYYMM/YYYYMMDD scheme.
LEGACY_OCCURRED_AT_RESOLVERS: tuple[OccurredAtResolver, ...] = (
    occurred_at_from_value,
    occurred_at_from_path_digits,
    occurred_at_now,
)


def resolve_occurred_at(
    raw: Any,
    relative: PurePosixPath | None = None,
    resolvers: tuple[OccurredAtResolver, ...] = OCCURRED_AT_RESOLVERS,
) -> str:
    """Walk the resolver chain; the last resolver always answers."""
    for resolver in resolvers:
        found = resolver(raw, relative)
        if found is not None:
            return format_instant(found)
    return format_instant(utc_now())


# ── id resolvers ──────────────────────────────────────────

IdResolver = Callable[[dict, PurePosixPath], str | None]


def id_from_frontmatter(meta: dict, relative: PurePosixPath) -> str | None:
    value = meta.get("id")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def id_from_path(meta: dict, relative: PurePosixPath) -> str | None:
    """``diary-<YYYYMMDD>-<basename>`` from the folder date, or ``diary-<basename>``."""
    day = occurred_at_from_day_dirs(None, relative) or occurred_at_from_path_digits(None, relative)
    if day is None:
        return f"diary-{relative.stem}"
    return f"diary-{day:%Y%m%d}-{relative.stem}"


ID_RESOLVERS: tuple[IdResolver, ...] = (id_from_frontmatter, id_from_path)


def resolve_id(meta: dict, relative: PurePosixPath) -> str:
    for resolver in ID_RESOLVERS:
        found = resolver(meta, relative)
        if found:
            return found
    return f"diary-{relative.stem}"


# ── Slugs ─────────────────────────────────────────────────


def title_to_slug(title: str | None) -> str:
    cleaned = _SLUG_STRIP_RE.sub("_", (title or "").strip()).strip("_")
    return cleaned or "diary"


def random_suffix(length: int = 2) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def build_slug(title: str | None) -> str:
    """``0x<last 6 hex digits of epoch ms>-<slugified title>``."""
    prefix = f"0x{format(int(time.time() * 1000), 'x')[-6:]}"
    return f"{prefix}-{title_to_slug(title)}"


# ── File primitives ───────────────────────────────────────


def same_path(a: Path | None, b: Path | None) -> bool:
    if a is None or b is None:
        return False
    return os.path.abspath(a) == os.path.abspath(b)


def move_file(src: Path, dst: Path) -> bool:
    """Rename, falling back to copy+delete across devices.

    On failure the source is left where it was and False is returned.
    """
    if same_path(src, dst):
        return True
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        src.rename(dst)
        return True
    except OSError as e:
        logger.debug("rename %s -> %s failed (%s), copying instead", src, dst, e)
    try:
        shutil.copy2(src, dst)
    except OSError as e:
        logger.warning("Could not move %s to %s: %s", src, dst, e)
        if dst.exists() and src.exists():
            dst.unlink(missing_ok=True)
        return False
    try:
        src.unlink()
    except OSError as e:
        # Copy landed; the stale source is left for the next sweep.
        logger.warning("Copied %s to %s but could not remove the source: %s", src, dst, e)
    return True


def free_path(path: Path, current: Path | None = None) -> Path:
    """``path``, or ``name-1.ext``, ``name-2.ext``... when another file holds it."""
    candidate = path
    counter = 1
    while candidate.exists() and not same_path(candidate, current):
        candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
        counter += 1
    return candidate


def has_files(directory: Path) -> bool:
    return any(p.is_file() or p.is_symlink() for p in directory.rglob("*"))


def prune_empty_dirs(content_dir: Path) -> int:
    """Remove day, month and year directories whose subtrees hold no files."""
    removed = 0
    if not content_dir.is_dir():
        return removed
    for year in sorted(p for p in content_dir.iterdir() if p.is_dir()):
        for month in sorted(p for p in year.iterdir() if p.is_dir()):
            for day in sorted(p for p in month.iterdir() if p.is_dir()):
                if not has_files(day):
                    shutil.rmtree(day, ignore_errors=True)
                    removed += 1
            removed += _rmdir_if_empty(month)
        removed += _rmdir_if_empty(year)
    return removed


def remove_empty_tree(directory: Path) -> None:
    """Delete empty directories bottom-up, ``directory`` included. Files are never touched."""
    if not directory.is_dir():
        return
    for current, _dirs, _files in os.walk(directory, topdown=False):
        _rmdir_if_empty(Path(current))


def _rmdir_if_empty(directory: Path) -> int:
    try:
        if not any(directory.iterdir()):
            directory.rmdir()
            return 1
    except OSError as e:
        logger.warning("Could not remove empty directory %s: %s", directory, e)
    return 0


# ── Resolver ──────────────────────────────────────────────


class PathResolver:
    """Computes where diary files and their assets belong."""

    def __init__(self, paths: StorePaths) -> None:
        self.paths = paths

    def day_dir_for(self, occurred_at: Any) -> Path:
        """Day directory for an instant; unparsable values fall back to today."""
        instant = parse_instant(occurred_at) or utc_now()
        return self.paths.content_dir / f"{instant:%Y}" / f"{instant:%Y%m}" / f"{instant:%Y%m%d}"

    def ensure_day_structure(self, day_dir: Path) -> Path:
        """Create the day directory and its skeleton. Idempotent."""
        for sub in (CHILDREN_DIR, *ASSET_DIRS):
            (day_dir / sub).mkdir(parents=True, exist_ok=True)
        return day_dir

    def target_dir(self, occurred_at: Any, is_child: bool) -> Path:
        day_dir = self.day_dir_for(occurred_at)
        return day_dir / CHILDREN_DIR if is_child else day_dir

    def asset_target(self, occurred_at: Any, filename: str) -> Path:
        day_dir = self.day_dir_for(occurred_at)
        return day_dir / classify_asset_dir(filename) / Path(filename).name

    def compute_diary_path(
        self,
        title: str | None,
        occurred_at: Any,
        is_child: bool,
        current_path: Path | None = None,
    ) -> Path:
        """Canonical file path for an entry.

        An existing entry keeps its basename unless another file already
        holds that name in the target directory.
        """
        day_dir = self.ensure_day_structure(self.day_dir_for(occurred_at))
        target_dir = day_dir / CHILDREN_DIR if is_child else day_dir

        if current_path is not None:
            candidate = target_dir / current_path.name
            if not candidate.exists() or same_path(candidate, current_path):
                return candidate

        path = target_dir / f"{build_slug(title)}.md"
        while path.exists() and not same_path(path, current_path):
            path = target_dir / f"{build_slug(title)}-{random_suffix()}.md"
        return path

    def collect_diary_files(self) -> list[DiaryFile]:
        """Every markdown file in a day directory or its children/ folder."""
        files: list[DiaryFile] = []
        content_dir = self.paths.content_dir
        if not content_dir.is_dir():
            return files
        for year in sorted(p for p in content_dir.iterdir() if p.is_dir()):
            for month in sorted(p for p in year.iterdir() if p.is_dir()):
                for day in sorted(p for p in month.iterdir() if p.is_dir()):
                    files.extend(DiaryFile(p, False) for p in sorted(day.glob("*.md")) if p.is_file())
                    children = day / CHILDREN_DIR
                    if children.is_dir():
                        files.extend(
                            DiaryFile(p, True) for p in sorted(children.glob("*.md")) if p.is_file()
                        )
        return files

    def relative(self, path: Path) -> PurePosixPath:
        return PurePosixPath(self.paths.relative(path))
