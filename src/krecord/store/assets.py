"""Asset classification by file extension."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Literal

AssetDir = Literal["imgs", "video", "files"]

IMAGE_EXTS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".avif"})
VIDEO_EXTS = frozenset({".mp4", ".mov", ".webm", ".m4v", ".avi", ".mkv"})
OTHER_ASSET_DIR: AssetDir = "files"
ASSET_DIRS: tuple[AssetDir, ...] = ("imgs", "video", OTHER_ASSET_DIR)


def _extension(filename: str) -> str:
    return PurePosixPath(filename.replace("\\", "/")).suffix.lower()


def classify_asset_dir(filename: str) -> AssetDir:
    """Map a filename to the day subdirectory it belongs in."""
    ext = _extension(filename)
    if ext in IMAGE_EXTS:
        return "imgs"
    if ext in VIDEO_EXTS:
        return "video"
    return OTHER_ASSET_DIR


def is_media(filename: str) -> bool:
    return _extension(filename) in IMAGE_EXTS | VIDEO_EXTS


def normalize_asset_path(value: str) -> str:
    """Collapse ``.``/``..``/empty segments and use forward slashes.

    ``..`` pops the previous segment and never climbs above the first one.
    """
    if not value:
        return ""
    segments: list[str] = []
    for segment in value.replace("\\", "/").split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/".join(segments)


def sanitize_filename(name: str) -> str:
    """Replace anything outside ``[A-Za-z0-9_.-]`` with an underscore."""
    return re.sub(r"[^a-zA-Z0-9_.-]", "_", name)
