"""Diary entries as markdown files with YAML frontmatter, one file per entry.

Lookups scan every file under content/ and match on the resolved id. That is
linear in the corpus size, which is fine for a personal log of a few
thousand entries.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from krecord.store.context import StoreContext
from krecord.store.errors import DiaryNotFoundError
from krecord.store.markdown import (
    as_str_list,
    clean_str,
    load_post,
    rewrite_inline_asset_paths,
    write_post,
)
from krecord.store.models import FRONTMATTER_KEYS, UNSET, DiaryEntry, DiaryInput, DiaryPatch
from krecord.store.paths import (
    DiaryFile,
    parse_instant,
    resolve_id,
    resolve_occurred_at,
    same_path,
    utc_now,
)

if TYPE_CHECKING:
    from krecord.store.migration import MigrationNormalizer
    from krecord.store.relations import RelationsIndex

logger = logging.getLogger(__name__)


class DiaryRepository:
    """CRUD over diary markdown files."""

    def __init__(
        self,
        context: StoreContext,
        relations: RelationsIndex,
        normalizer: MigrationNormalizer,
    ) -> None:
        self.context = context
        self.resolver = context.resolver
        self.relations = relations
        self.normalizer = normalizer

    # ── Reading ──────────────────────────────────────────────

    def read_file(self, file: DiaryFile) -> DiaryEntry:
        """Build an entry from a file, filling gaps from the file's location."""
        meta, body = load_post(file.path)
        relative = self.resolver.relative(file.path)
        title = meta.get("title")
        return DiaryEntry(
            id=resolve_id(meta, relative),
            title=str(title) if title is not None else file.path.stem,
            content=rewrite_inline_asset_paths(body, file.path.parent, self.context.root),
            occurred_at=resolve_occurred_at(meta.get("occurredAt"), relative),
            tags=as_str_list(meta.get("tags")),
            attachments=as_str_list(meta.get("attachments")),
            parent_id=clean_str(meta.get("parentId")),
            cover=clean_str(meta.get("cover")),
            mood=clean_str(meta.get("mood")),
            extra={k: v for k, v in meta.items() if k not in FRONTMATTER_KEYS},
        )

    def _scan(self):
        for file in self.resolver.collect_diary_files():
            try:
                yield file, self.read_file(file)
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable diary file %s: %s", file.path, e)

    def _locate(self, diary_id: str) -> tuple[DiaryFile, DiaryEntry]:
        for file, entry in self._scan():
            if entry.id == diary_id:
                return file, entry
        raise DiaryNotFoundError(diary_id)

    def find_by_id(self, diary_id: str) -> DiaryEntry:
        """Return the entry with this id or raise DiaryNotFoundError."""
        self.normalizer.ensure_ready()
        return self._locate(diary_id)[1]

    def get(self, diary_id: str) -> DiaryEntry | None:
        try:
            return self.find_by_id(diary_id)
        except DiaryNotFoundError:
            return None

    def list_all(self) -> list[DiaryEntry]:
        """All entries, newest occurredAt first."""
        self.normalizer.ensure_ready()
        entries = [entry for _, entry in self._scan()]
        entries.sort(key=lambda e: parse_instant(e.occurred_at) or utc_now(), reverse=True)
        return entries

    def children_of(self, parent_id: str) -> list[DiaryEntry]:
        """Entries whose parentId names ``parent_id``, oldest first."""
        children = [e for e in self.list_all() if e.parent_id == parent_id]
        children.reverse()
        return children

    # ── Writing ──────────────────────────────────────────────

    def _write(self, entry: DiaryEntry, file: DiaryFile) -> DiaryEntry:
        write_post(file.path, entry.content, entry.frontmatter())
        return self.read_file(file)

    def append(self, data: DiaryInput) -> DiaryEntry:
        """Write a new entry under its canonical date path and return it as stored."""
        self.normalizer.ensure_ready()
        parent_id = clean_str(data.parent_id)
        raw_occurred = utc_now() if data.occurred_at in (None, "") else data.occurred_at
        path = self.resolver.compute_diary_path(data.title, raw_occurred, bool(parent_id))
        entry = DiaryEntry(
            id=clean_str(data.id) or f"diary-{int(time.time() * 1000)}",
            title=data.title,
            content=data.content,
            # Unparsable input falls back to the date of the directory chosen above.
            occurred_at=resolve_occurred_at(raw_occurred, self.resolver.relative(path)),
            tags=list(data.tags),
            attachments=[a for a in data.attachments if a],
            parent_id=parent_id,
            cover=clean_str(data.cover),
            mood=clean_str(data.mood),
        )
        stored = self._write(entry, DiaryFile(path, bool(parent_id)))
        logger.info("Created diary %s at %s", entry.id, self.context.paths.relative(path))
        return stored

    def update(self, diary_id: str, patch: DiaryPatch) -> DiaryEntry:
        """Merge a patch into an entry, relocating its file when date or parent changed."""
        self.normalizer.ensure_ready()
        file, current = self._locate(diary_id)

        occurred_at = current.occurred_at
        if patch.occurred_at is not UNSET and patch.occurred_at not in (None, ""):
            occurred_at = patch.occurred_at

        merged = DiaryEntry(
            id=current.id,
            title=current.title if patch.title is UNSET else str(patch.title),
            content=current.content if patch.content is UNSET else str(patch.content),
            occurred_at=occurred_at,
            tags=current.tags if patch.tags is UNSET else as_str_list(patch.tags),
            attachments=current.attachments if patch.attachments is UNSET else as_str_list(patch.attachments),
            parent_id=current.parent_id if patch.parent_id is UNSET else clean_str(patch.parent_id),
            cover=current.cover if patch.cover is UNSET else clean_str(patch.cover),
            mood=current.mood if patch.mood is UNSET else clean_str(patch.mood),
            extra=dict(current.extra),
        )

        # A file filed under children/ stays there until its parent is explicitly changed.
        is_child = merged.is_child or (file.is_child and patch.parent_id is UNSET)
        target = self.resolver.compute_diary_path(merged.title, merged.occurred_at, is_child, current_path=file.path)
        merged.occurred_at = resolve_occurred_at(merged.occurred_at, self.resolver.relative(target))
        stored = self._write(merged, DiaryFile(target, is_child))

        if not same_path(target, file.path):
            file.path.unlink(missing_ok=True)
            logger.info(
                "Moved diary %s: %s -> %s",
                diary_id,
                self.context.paths.relative(file.path),
                self.context.paths.relative(target),
            )
        else:
            logger.info("Updated diary %s", diary_id)
        return stored

    def delete(self, diary_id: str) -> None:
        """Remove the entry's file and every relation that points at it."""
        self.normalizer.ensure_ready()
        file, _ = self._locate(diary_id)
        file.path.unlink(missing_ok=True)
        self.relations.remove_diary(diary_id)
        logger.info("Deleted diary %s", diary_id)
