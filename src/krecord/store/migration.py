"""Legacy layout migration and the placement normalization sweep.

Two passes, both safe to run against a live data root:

1. ``migrate_legacy`` moves ``dailyReport/``, ``content/post/``,
   ``assets/``, root ``relations.json``, ``table/meta.json`` and loose root
   media into the canonical layout.
2. ``normalize_diary_placement`` walks the canonical tree and moves every
   entry (and the assets it references from outside content/) to where its
   frontmatter says it belongs.

Neither pass deletes a file. Empty directories are removed afterwards.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from krecord.store.assets import classify_asset_dir, is_media, normalize_asset_path
from krecord.store.context import StoreContext
from krecord.store.markdown import (
    as_str_list,
    bare_media_names,
    clean_str,
    load_post,
    relative_link,
    replace_bare_name,
    sub_relative_links,
    write_post,
)
from krecord.store.models import RelationsMap
from krecord.store.paths import (
    CHILDREN_DIR,
    LEGACY_OCCURRED_AT_RESOLVERS,
    format_instant,
    free_path,
    move_file,
    prune_empty_dirs,
    remove_empty_tree,
    resolve_occurred_at,
    same_path,
    utc_now,
)
from krecord.store.relations import RelationsIndex

logger = logging.getLogger(__name__)

SWEEP_ERRORS = (OSError, yaml.YAMLError, ValueError)


@dataclass
class SweepReport:
    """What one migration or normalization pass did."""

    moved_entries: int = 0
    moved_assets: int = 0
    rewritten_entries: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def moves(self) -> int:
        return self.moved_entries + self.moved_assets

    def to_dict(self) -> dict[str, Any]:
        return {
            "movedEntries": self.moved_entries,
            "movedAssets": self.moved_assets,
            "rewrittenEntries": self.rewritten_entries,
            "failures": list(self.failures),
        }


def _is_under(path: Path, directory: Path) -> bool:
    try:
        Path(os.path.abspath(path)).relative_to(os.path.abspath(directory))
    except ValueError:
        return False
    return True


class MigrationNormalizer:
    """Brings a data root into the canonical layout."""

    def __init__(self, context: StoreContext, relations: RelationsIndex) -> None:
        self.context = context
        self.paths = context.paths
        self.resolver = context.resolver
        self.relations = relations

    def ensure_ready(self) -> None:
        """Run each pass once per context. Repositories call this before touching diaries."""
        if not self.context.legacy_migrated:
            self.migrate_legacy()
        if not self.context.placement_checked:
            self.normalize_diary_placement()

    # ── Legacy migration ─────────────────────────────────────

    def has_legacy_data(self) -> bool:
        p = self.paths
        legacy = (
            p.legacy_diaries_dir,
            p.legacy_post_dir,
            p.legacy_assets_dir,
            p.legacy_relations_file,
            p.legacy_meta_file,
        )
        if any(path.exists() for path in legacy):
            return True
        return p.root.is_dir() and any(c.is_file() and is_media(c.name) for c in p.root.iterdir())

    def migrate_legacy(self) -> SweepReport:
        """Move every legacy artifact into the canonical layout."""
        report = SweepReport()
        self.context.legacy_migrated = True
        if not self.has_legacy_data():
            return report

        logger.info("Migrating legacy layout under %s", self.paths.root)
        self.context.ensure_base_files()
        self._migrate_relations()
        self._migrate_sheet_meta()

        migrated_dates: list[str] = []
        for base in (self.paths.legacy_diaries_dir, self.paths.legacy_post_dir):
            if not base.is_dir():
                continue
            for md in sorted(base.rglob("*.md")):
                try:
                    migrated_dates.append(self._migrate_diary(md, base, report))
                except SWEEP_ERRORS as e:
                    self._fail(report, md, e)

        self._migrate_loose_media(migrated_dates, report)

        for legacy_dir in (self.paths.legacy_diaries_dir, self.paths.legacy_post_dir, self.paths.legacy_assets_dir):
            remove_empty_tree(legacy_dir)

        logger.info(
            "Legacy migration done: %d entries, %d assets moved, %d failures",
            report.moved_entries,
            report.moved_assets,
            len(report.failures),
        )
        return report

    def _migrate_relations(self) -> None:
        legacy = self.paths.legacy_relations_file
        if not legacy.exists():
            return
        raw = self.context.read_json(legacy, None)
        if not isinstance(raw, dict):
            logger.warning("Leaving unreadable legacy relations file in place: %s", legacy)
            return
        merged = self.relations.merge(RelationsMap.from_dict(raw))
        legacy.unlink()
        logger.info("Merged legacy relations.json (%d links)", len(merged.pairs()))

    def _migrate_sheet_meta(self) -> None:
        legacy = self.paths.legacy_meta_file
        if not legacy.exists():
            return
        raw = self.context.read_json(legacy, None)
        if isinstance(raw, dict):
            raw = raw.get("sheets")
        if not isinstance(raw, list):
            logger.warning("Leaving unreadable legacy sheet registry in place: %s", legacy)
            return

        current = self.context.read_json(self.paths.sheet_meta_file, [])
        if isinstance(current, dict):
            current = current.get("sheets", [])
        if not isinstance(current, list):
            current = []
        known = {record.get("id") for record in current if isinstance(record, dict)}
        added = [r for r in raw if isinstance(r, dict) and (r.get("id") is None or r.get("id") not in known)]

        self.context.write_json(self.paths.sheet_meta_file, [*current, *added])
        legacy.unlink()
        logger.info("Moved %d sheet records from table/meta.json", len(added))

    def _migrate_diary(self, md: Path, base: Path, report: SweepReport) -> str:
        """Move one legacy markdown file; returns its normalized occurredAt."""
        meta, body = load_post(md)
        occurred_at = resolve_occurred_at(
            meta.get("occurredAt"), self.resolver.relative(md), LEGACY_OCCURRED_AT_RESOLVERS
        )
        is_child = bool(clean_str(meta.get("parentId"))) or CHILDREN_DIR in md.relative_to(base).parts[:-1]
        target = self.resolver.compute_diary_path(
            clean_str(meta.get("title")), occurred_at, is_child, current_path=md
        )
        day_dir = self.resolver.day_dir_for(occurred_at)

        meta["occurredAt"] = occurred_at
        self._relocate_frontmatter_assets(meta, day_dir, report)
        body = self._fix_relative_links(body, md.parent, target.parent, day_dir, report)
        body = self._rewrite_bare_names(body, target.parent, day_dir, report)

        write_post(target, body, meta)
        md.unlink()
        report.moved_entries += 1
        logger.info("Migrated %s -> %s", self.paths.relative(md), self.paths.relative(target))
        return occurred_at

    def _fallback_date(self, migrated_dates: list[str]) -> str:
        """Earliest migrated date, else the first existing entry's day, else now."""
        if migrated_dates:
            return min(migrated_dates)
        files = self.resolver.collect_diary_files()
        if files:
            return resolve_occurred_at(None, self.resolver.relative(files[0].path))
        return format_instant(utc_now())

    def _migrate_loose_media(self, migrated_dates: list[str], report: SweepReport) -> None:
        """Root media and whatever is left in assets/ go to the fallback day."""
        sources = [p for p in sorted(self.paths.root.iterdir()) if p.is_file() and is_media(p.name)]
        if self.paths.legacy_assets_dir.is_dir():
            sources += [p for p in sorted(self.paths.legacy_assets_dir.rglob("*")) if p.is_file()]
        if not sources:
            return
        day_dir = self.resolver.day_dir_for(self._fallback_date(migrated_dates))
        for source in sources:
            self._adopt(source, day_dir, report)

    # ── Placement normalization ──────────────────────────────

    def normalize_diary_placement(self) -> SweepReport:
        """Move misplaced entries and their stray assets; safe to run repeatedly."""
        self.context.placement_checked = True
        report = SweepReport()
        for file in self.resolver.collect_diary_files():
            try:
                self._repair_entry(file.path, file.is_child, report)
            except SWEEP_ERRORS as e:
                self._fail(report, file.path, e)
        pruned = prune_empty_dirs(self.paths.content_dir)

        if report.moves or report.rewritten_entries or report.failures:
            logger.info(
                "Placement sweep: %d entries moved, %d assets moved, %d rewritten, %d failures, %d dirs pruned",
                report.moved_entries,
                report.moved_assets,
                report.rewritten_entries,
                len(report.failures),
                pruned,
            )
        return report

    def _repair_entry(self, path: Path, in_children: bool, report: SweepReport) -> None:
        meta, body = load_post(path)
        occurred_at = resolve_occurred_at(meta.get("occurredAt"), self.resolver.relative(path))
        is_child = in_children or bool(clean_str(meta.get("parentId")))
        day_dir = self.resolver.day_dir_for(occurred_at)
        expected_dir = self.resolver.target_dir(occurred_at, is_child)

        final = path
        if not same_path(path.parent, expected_dir):
            self.resolver.ensure_day_structure(day_dir)
            target = free_path(expected_dir / path.name)
            if move_file(path, target):
                final = target
                report.moved_entries += 1
                logger.info("Moved %s -> %s", self.paths.relative(path), self.paths.relative(target))
            else:
                report.failures.append(f"{self.paths.relative(path)}: could not move to {expected_dir}")

        changed = self._relocate_frontmatter_assets(meta, day_dir, report)
        fixed = self._fix_relative_links(body, path.parent, final.parent, day_dir, report)
        fixed = self._rewrite_bare_names(fixed, final.parent, day_dir, report)
        if changed or fixed != body:
            write_post(final, fixed, meta)
            report.rewritten_entries += 1

    # ── Assets ───────────────────────────────────────────────

    def _is_adopted(self, path: Path) -> bool:
        """True for files already filed somewhere in the canonical content tree."""
        return _is_under(path, self.paths.content_dir) and not _is_under(path, self.paths.legacy_post_dir)

    def find_asset_anywhere(self, name: str) -> Path | None:
        """Look for a file by basename: root, assets/, content/, then the whole content tree."""
        for candidate in (
            self.paths.root / name,
            self.paths.legacy_assets_dir / name,
            self.paths.content_dir / name,
        ):
            if candidate.is_file():
                return candidate
        for current, dirs, files in os.walk(self.paths.content_dir):
            dirs.sort()
            if name in files:
                return Path(current) / name
        return None

    def _locate_asset(self, value: str) -> Path | None:
        if "://" in value or value.startswith("data:"):
            return None
        normalized = normalize_asset_path(value)
        if not normalized:
            return None
        candidate = self.paths.root / normalized
        if candidate.is_file():
            return candidate
        return self.find_asset_anywhere(Path(normalized).name)

    def _adopt(self, source: Path, day_dir: Path, report: SweepReport) -> Path | None:
        """Move a stray asset into the day's classified subdirectory."""
        self.resolver.ensure_day_structure(day_dir)
        target = free_path(day_dir / classify_asset_dir(source.name) / source.name)
        if not move_file(source, target):
            report.failures.append(f"{self.paths.relative(source)}: could not move to {target.parent}")
            return None
        report.moved_assets += 1
        logger.info("Moved asset %s -> %s", self.paths.relative(source), self.paths.relative(target))
        return target

    def _relocate_asset(self, value: str, day_dir: Path, report: SweepReport) -> str:
        """New root-relative reference for a frontmatter asset path."""
        source = self._locate_asset(value)
        if source is None:
            return value
        if not self._is_adopted(source):
            source = self._adopt(source, day_dir, report)
            if source is None:
                return value
        return self.paths.relative(source)

    def _relocate_frontmatter_assets(self, meta: dict[str, Any], day_dir: Path, report: SweepReport) -> bool:
        changed = False
        if meta.get("attachments"):
            current = as_str_list(meta["attachments"])
            moved = [self._relocate_asset(item, day_dir, report) for item in current]
            if moved != current:
                meta["attachments"] = moved
                changed = True
        cover = clean_str(meta.get("cover"))
        if cover:
            moved_cover = self._relocate_asset(cover, day_dir, report)
            if moved_cover != cover:
                meta["cover"] = moved_cover
                changed = True
        return changed

    def _fix_relative_links(
        self, body: str, old_dir: Path, new_dir: Path, day_dir: Path, report: SweepReport
    ) -> str:
        """Keep ``./``/``../`` links pointing at the same file after a move.

        Targets outside content/ are adopted into the entry's day first.
        """
        moved = not same_path(old_dir, new_dir)

        def fix(link: str) -> str:
            absolute = Path(os.path.normpath(old_dir / link))
            if not _is_under(absolute, self.paths.root):
                return link
            if absolute.is_file() and not self._is_adopted(absolute):
                adopted = self._adopt(absolute, day_dir, report)
                if adopted is not None:
                    return relative_link(adopted, new_dir)
            return relative_link(absolute, new_dir) if moved else link

        return sub_relative_links(body, fix)

    def _rewrite_bare_names(self, body: str, md_dir: Path, day_dir: Path, report: SweepReport) -> str:
        """Replace media filenames written without a directory by a link relative to ``md_dir``."""
        for name in bare_media_names(body):
            source = self.find_asset_anywhere(name)
            if source is None:
                continue
            if not self._is_adopted(source):
                source = self._adopt(source, day_dir, report)
                if source is None:
                    continue
            body = replace_bare_name(body, name, relative_link(source, md_dir))
        return body

    def _fail(self, report: SweepReport, path: Path, error: Exception) -> None:
        logger.warning("Skipping %s: %s", path, error)
        report.failures.append(f"{self.paths.relative(path)}: {error}")
