"""Per-root state shared by every repository."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from krecord.store.paths import PathResolver, StorePaths

logger = logging.getLogger(__name__)


class StoreContext:
    """Data root, its fixed paths, and the sweep flags for this store's lifetime.

    Build one per data root and hand the same instance to every repository.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.paths = StorePaths.from_root(self.root)
        self.resolver = PathResolver(self.paths)
        self.legacy_migrated = False
        self.placement_checked = False

    def reset(self) -> None:
        """Forget that the sweep ran, so the next access runs it again."""
        self.legacy_migrated = False
        self.placement_checked = False

    def ensure_base_files(self) -> None:
        """Ensure content/, table/, relations/ and the two JSON files exist. Idempotent."""
        for d in (self.paths.content_dir, self.paths.table_dir, self.paths.relations_dir):
            d.mkdir(parents=True, exist_ok=True)

        if not self.paths.relations_file.exists():
            self.write_json(self.paths.relations_file, {"sheetRowsToDiaries": {}, "diariesToSheets": {}})
        if not self.paths.sheet_meta_file.exists():
            self.write_json(self.paths.sheet_meta_file, [])

    def write_json(self, path: Path, data: object) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")

    def read_json(self, path: Path, default: object) -> object:
        """Parse a JSON file; missing or malformed files yield ``default``."""
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            logger.warning("Unreadable JSON in %s: %s", path, e)
            return default
