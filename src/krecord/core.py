"""Krecord facade: one data root, one context, every repository wired to it.

Responsibilities:
1. Build the StoreContext for ``config.data_root``
2. Share it between the relations index, the normalizer and the repositories
3. Expose the explicit maintenance sweep
"""

from __future__ import annotations

import logging
from pathlib import Path

from krecord.config import KrecordConfig
from krecord.store.context import StoreContext
from krecord.store.diary import DiaryRepository
from krecord.store.migration import MigrationNormalizer, SweepReport
from krecord.store.relations import RelationsIndex
from krecord.store.sheets import SheetRepository
from krecord.store.uploads import AssetStore

logger = logging.getLogger(__name__)


class Krecord:
    """Entry point for callers: diaries, sheets, relations and assets of one data root."""

    def __init__(self, config: KrecordConfig) -> None:
        self.config = config
        self.context = StoreContext(config.data_root)
        self.relations = RelationsIndex(self.context)
        self.normalizer = MigrationNormalizer(self.context, self.relations)
        self.diaries = DiaryRepository(self.context, self.relations, self.normalizer)
        self.sheets = SheetRepository(self.context, self.relations, self.normalizer)
        self.assets = AssetStore(self.context, self.normalizer)
        logger.debug("Data root: %s", self.context.root)

    @property
    def root(self) -> Path:
        return self.context.root

    def normalize(self) -> SweepReport:
        """Run the legacy migration and a fresh placement sweep, whatever ran before."""
        self.context.ensure_base_files()
        report = self.normalizer.migrate_legacy()
        sweep = self.normalizer.normalize_diary_placement()
        report.moved_entries += sweep.moved_entries
        report.moved_assets += sweep.moved_assets
        report.rewritten_entries += sweep.rewritten_entries
        report.failures.extend(sweep.failures)
        return report
