"""Upload destination and safe lookup for files under the data root."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from krecord.store.assets import normalize_asset_path, sanitize_filename
from krecord.store.context import StoreContext
from krecord.store.errors import AssetNotFoundError, InvalidAssetPathError
from krecord.store.paths import utc_now

if TYPE_CHECKING:
    from krecord.store.migration import MigrationNormalizer

logger = logging.getLogger(__name__)


class AssetStore:
    def __init__(self, context: StoreContext, normalizer: MigrationNormalizer) -> None:
        self.context = context
        self.resolver = context.resolver
        self.normalizer = normalizer

    def save(self, filename: str, data: bytes, occurred_at: Any = None) -> tuple[Path, str]:
        """Write an upload into its day's classified folder.

        Returns the absolute path and the root-relative path to store in
        frontmatter. A file with the same name on that day is overwritten.
        """
        self.normalizer.ensure_ready()
        name = sanitize_filename(Path(filename.replace("\\", "/")).name) or "upload"
        when = occurred_at or utc_now()
        day_dir = self.resolver.ensure_day_structure(self.resolver.day_dir_for(when))
        target = self.resolver.asset_target(when, name)
        target.write_bytes(data)
        relative = self.context.paths.relative(target)
        logger.info("Saved asset %s (%d bytes) under %s", relative, len(data), day_dir.name)
        return target, relative

    def resolve(self, relative: str) -> Path:
        """Map a root-relative asset path to a file, refusing anything outside the root."""
        if not relative or "\0" in relative:
            raise InvalidAssetPathError(f"invalid asset path: {relative!r}")
        raw = relative.replace("\\", "/")
        root = os.path.abspath(self.context.root)
        candidate = os.path.abspath(os.path.join(root, raw.lstrip("/")))
        if candidate != root and not candidate.startswith(root + os.sep):
            raise InvalidAssetPathError(f"asset path escapes the data root: {relative!r}")
        path = Path(candidate)
        if not path.is_file():
            raise AssetNotFoundError(normalize_asset_path(raw))
        return path
