"""Markdown + YAML frontmatter reading/writing and inline asset link rewriting."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import frontmatter
import yaml

logger = logging.getLogger(__name__)

_YAML = frontmatter.YAMLHandler()
FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)

MARKDOWN_LINK_RE = re.compile(r"(!?\[[^\]]*\]\()(\.{1,2}/[^)]+)(\))")
HTML_SRC_RE = re.compile(r"""(<(?:img|video|audio|source)[^>]*\ssrc=["'])(\.{1,2}/[^"']+)(["'])""", re.IGNORECASE)
HTML_HREF_RE = re.compile(r"""(<a[^>]*\shref=["'])(\.{1,2}/[^"']+)(["'])""", re.IGNORECASE)

# A media filename standing on its own: not part of a longer path or URL.
# A trailing sentence period is allowed.
_PATH_CHARS = r"A-Za-z0-9_/.\-"
_TRAILING_GUARD = r"(?![A-Za-z0-9_/\-]|\.[A-Za-z0-9_])"
MEDIA_NAME_PATTERN = r"[A-Za-z0-9_.\-]+\.(?:png|jpg|jpeg|gif|webp|svg|avif|mp4|mov|webm|m4v|avi|mkv)"
BARE_MEDIA_RE = re.compile(rf"(?<![{_PATH_CHARS}])({MEDIA_NAME_PATTERN}){_TRAILING_GUARD}", re.IGNORECASE)


def split_post(text: str, source: object = "<text>") -> tuple[dict[str, Any], str]:
    """Split text into (metadata, body) keeping the body as written.

    Only the blank separator line after the closing fence and the final
    newline are removed, so indentation and blank lines survive a
    write/read cycle. Broken YAML is logged and the whole text is treated
    as body, so a hand-edited file never makes the store unreadable.
    """
    match = FRONTMATTER_RE.match(text)
    if match is None:
        return {}, _drop_final_newline(text)
    try:
        metadata = _YAML.load(match.group(1))
    except (yaml.YAMLError, TypeError, ValueError) as e:
        logger.warning("Unreadable frontmatter in %s: %s", source, e)
        return {}, text.strip()
    body = text[match.end():]
    if body.startswith("\n"):
        body = body[1:]
    return (metadata if isinstance(metadata, dict) else {}), _drop_final_newline(body)


def _drop_final_newline(text: str) -> str:
    return text[:-1] if text.endswith("\n") else text


def load_post(path: Path) -> tuple[dict[str, Any], str]:
    """Parse a markdown file into (metadata, body)."""
    return split_post(path.read_text(encoding="utf-8"), path)


def dump_post(content: str, metadata: dict[str, Any]) -> str:
    """Frontmatter block, one blank line, then the content untouched."""
    exported = _YAML.export(metadata, sort_keys=False)
    return f"---\n{exported}\n---\n\n{content}\n"


def write_post(path: Path, content: str, metadata: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_post(content, metadata), encoding="utf-8")


def clean_str(value: Any) -> str | None:
    """Strip a frontmatter scalar; blank or missing becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item) != ""]
    return [str(value)]


def sub_relative_links(content: str, replace: Callable[[str], str]) -> str:
    """Apply ``replace`` to every ``./``/``../`` link target in markdown or HTML syntax."""
    if "./" not in content:
        return content

    def _sub(match: re.Match) -> str:
        return f"{match.group(1)}{replace(match.group(2))}{match.group(3)}"

    for pattern in (MARKDOWN_LINK_RE, HTML_SRC_RE, HTML_HREF_RE):
        content = pattern.sub(_sub, content)
    return content


def rewrite_inline_asset_paths(content: str, file_dir: Path, root: Path) -> str:
    """Turn ``./`` and ``../`` links into root-relative paths.

    Links are resolved against the directory the markdown file currently
    sits in. Links that would escape the root are left alone.
    """

    def resolve(rel: str) -> str:
        absolute = os.path.normpath(os.path.join(file_dir, rel))
        normalized = os.path.relpath(absolute, root)
        if not normalized or normalized == "." or normalized.startswith(".."):
            return rel
        return Path(normalized).as_posix()

    return sub_relative_links(content, resolve)


def relative_link(target: Path, from_dir: Path) -> str:
    """``./``-prefixed link from a directory to a file."""
    rel = Path(os.path.relpath(target, from_dir)).as_posix()
    return rel if rel.startswith(".") else f"./{rel}"


# Text of a markdown link or image, e.g. the ``photo.png`` in ``![photo.png](...)``.
LINK_TEXT_RE = re.compile(r"\[[^\]\n]*\](?=\()")


def _in_link_text(content: str) -> Callable[[int], bool]:
    spans = [m.span() for m in LINK_TEXT_RE.finditer(content)]
    return lambda pos: any(start < pos < end for start, end in spans)


def bare_media_names(content: str) -> list[str]:
    """Media filenames written without any directory, in order of appearance."""
    in_link_text = _in_link_text(content)
    names: list[str] = []
    for match in BARE_MEDIA_RE.finditer(content):
        if not in_link_text(match.start()) and match.group(1) not in names:
            names.append(match.group(1))
    return names


def replace_bare_name(content: str, name: str, replacement: str) -> str:
    in_link_text = _in_link_text(content)
    pattern = re.compile(rf"(?<![{_PATH_CHARS}]){re.escape(name)}{_TRAILING_GUARD}")
    return pattern.sub(lambda m: m.group(0) if in_link_text(m.start()) else replacement, content)
