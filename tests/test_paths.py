"""Tests for path resolution, date/id resolvers and file moves."""

from __future__ import annotations

import re
import shutil

import pytest
from datetime import date, datetime, timezone
from pathlib import Path, PurePosixPath

from krecord.store import paths as paths_mod
from krecord.store.paths import (
    DiaryFile,
    PathResolver,
    StorePaths,
    build_slug,
    format_instant,
    free_path,
    move_file,
    parse_instant,
    prune_empty_dirs,
    resolve_id,
    resolve_occurred_at,
    title_to_slug,
)


@pytest.fixture
def resolver(tmp_path: Path) -> PathResolver:
    return PathResolver(StorePaths.from_root(tmp_path))


class TestInstants:
    def test_iso_with_z(self):
        assert parse_instant("2024-03-05T08:00:00Z") == datetime(2024, 3, 5, 8, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        assert parse_instant("2024-03-05T10:00:00+02:00") == datetime(2024, 3, 5, 8, tzinfo=timezone.utc)

    def test_naive_read_as_utc(self):
        assert parse_instant(datetime(2024, 3, 5, 8)) == datetime(2024, 3, 5, 8, tzinfo=timezone.utc)

    def test_date_object(self):
        # Unquoted YAML dates load as date objects.
        assert parse_instant(date(2024, 3, 5)) == datetime(2024, 3, 5, tzinfo=timezone.utc)

    def test_slash_format(self):
        assert parse_instant("2024/03/05") == datetime(2024, 3, 5, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [None, "", "yesterday", "2024-13-45", True, ["2024-03-05"]])
    def test_garbage(self, raw):
        assert parse_instant(raw) is None

    def test_format_millis(self):
        value = datetime(2024, 3, 5, 8, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_instant(value) == "2024-03-05T08:00:00.123Z"


class TestOccurredAtChain:
    def test_explicit_value_wins(self):
        relative = PurePosixPath("content/2023/202301/20230102/a.md")
        assert resolve_occurred_at("2024-03-05T08:00:00Z", relative) == "2024-03-05T08:00:00.000Z"

    def test_falls_back_to_day_dirs(self):
        relative = PurePosixPath("content/2023/202301/20230102/children/a.md")
        assert resolve_occurred_at("not a date", relative) == "2023-01-02T00:00:00.000Z"

    def test_falls_back_to_legacy_digits(self):
        relative = PurePosixPath("dailyReport/2022-07-09-walk.md")
        assert resolve_occurred_at(None, relative) == "2022-07-09T00:00:00.000Z"

    def test_skips_invalid_digit_runs(self):
        relative = PurePosixPath("dailyReport/99999999/20220709.md")
        assert resolve_occurred_at(None, relative) == "2022-07-09T00:00:00.000Z"

    def test_falls_back_to_now(self, monkeypatch):
        fixed = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        monkeypatch.setattr(paths_mod, "utc_now", lambda: fixed)
        assert resolve_occurred_at("garbage", PurePosixPath("notes/a.md")) == "2025-01-02T03:04:05.000Z"

    def test_never_raises(self):
        for raw in (None, "", "x", 10**30, {"a": 1}):
            assert resolve_occurred_at(raw).endswith("Z")


class TestIds:
    def test_frontmatter_id(self):
        assert resolve_id({"id": " diary-1 "}, PurePosixPath("content/2024/202403/20240305/a.md")) == "diary-1"

    def test_derived_from_path(self):
        relative = PurePosixPath("content/2024/202403/20240305/0x1-run.md")
        assert resolve_id({}, relative) == "diary-20240305-0x1-run"

    def test_derived_without_date(self):
        assert resolve_id({"id": ""}, PurePosixPath("notes/walk.md")) == "diary-walk"


class TestSlugs:
    def test_title_to_slug(self):
        assert title_to_slug("Morning run, 5k!") == "Morning_run_5k"
        assert title_to_slug("晨跑 记录") == "晨跑_记录"

    def test_title_to_slug_default(self):
        assert title_to_slug("   ") == "diary"
        assert title_to_slug(None) == "diary"

    def test_build_slug_shape(self):
        assert re.fullmatch(r"0x[0-9a-f]{1,6}-Run", build_slug("Run"))


class TestPathResolver:
    def test_compute_creates_skeleton(self, resolver: PathResolver):
        path = resolver.compute_diary_path("Run", "2024-03-05T08:00:00Z", False)
        day = resolver.paths.content_dir / "2024" / "202403" / "20240305"
        assert path.parent == day
        assert path.suffix == ".md"
        for sub in ("children", "imgs", "video", "files"):
            assert (day / sub).is_dir()

    def test_compute_child(self, resolver: PathResolver):
        path = resolver.compute_diary_path("Lap", "2024-03-05", True)
        assert path.parent.name == "children"

    def test_keeps_current_basename(self, resolver: PathResolver, tmp_path: Path):
        current = tmp_path / "elsewhere" / "mine.md"
        current.parent.mkdir()
        current.write_text("x")
        path = resolver.compute_diary_path("Other", "2024-03-05", False, current_path=current)
        assert path.name == "mine.md"

    def test_new_slug_when_basename_taken(self, resolver: PathResolver, tmp_path: Path):
        day = resolver.ensure_day_structure(resolver.day_dir_for("2024-03-05"))
        (day / "mine.md").write_text("someone else")
        current = tmp_path / "mine.md"
        current.write_text("x")
        path = resolver.compute_diary_path("Other", "2024-03-05", False, current_path=current)
        assert path.name != "mine.md"
        assert path.name.endswith("-Other.md")

    def test_collision_gets_suffix(self, resolver: PathResolver, monkeypatch):
        monkeypatch.setattr(paths_mod, "build_slug", lambda title: "0xabc-Run")
        first = resolver.compute_diary_path("Run", "2024-03-05", False)
        first.write_text("x")
        second = resolver.compute_diary_path("Run", "2024-03-05", False)
        assert second != first
        assert re.fullmatch(r"0xabc-Run-[0-9a-z]{2}\.md", second.name)

    def test_collect_diary_files(self, resolver: PathResolver):
        day = resolver.ensure_day_structure(resolver.day_dir_for("2024-03-05"))
        (day / "a.md").write_text("a")
        (day / "children" / "b.md").write_text("b")
        (day / "imgs" / "c.md").write_text("not an entry")
        files = resolver.collect_diary_files()
        assert files == [DiaryFile(day / "a.md", False), DiaryFile(day / "children" / "b.md", True)]

    def test_asset_target(self, resolver: PathResolver):
        target = resolver.asset_target("2024-03-05", "clip.mp4")
        assert resolver.paths.relative(target) == "content/2024/202403/20240305/video/clip.mp4"


class TestFilePrimitives:
    def test_move_file_rename(self, tmp_path: Path):
        src = tmp_path / "a.txt"
        src.write_text("hello")
        dst = tmp_path / "deep" / "b.txt"
        assert move_file(src, dst)
        assert not src.exists()
        assert dst.read_text() == "hello"

    def test_move_file_copy_fallback(self, tmp_path: Path, monkeypatch):
        src = tmp_path / "a.txt"
        src.write_text("hello")
        dst = tmp_path / "b.txt"

        def cross_device(self, target):
            raise OSError(18, "Invalid cross-device link")

        monkeypatch.setattr(Path, "rename", cross_device)
        assert move_file(src, dst)
        assert not src.exists()
        assert dst.read_text() == "hello"

    def test_move_file_failure_keeps_source(self, tmp_path: Path, monkeypatch):
        src = tmp_path / "a.txt"
        src.write_text("hello")
        dst = tmp_path / "b.txt"

        def fail(self, target):
            raise OSError("nope")

        def fail_copy(a, b):
            Path(b).write_text("partial")
            raise OSError("disk full")

        monkeypatch.setattr(Path, "rename", fail)
        monkeypatch.setattr(shutil, "copy2", fail_copy)
        assert move_file(src, dst) is False
        assert src.read_text() == "hello"
        assert not dst.exists()

    def test_free_path(self, tmp_path: Path):
        target = tmp_path / "a.md"
        assert free_path(target) == target
        target.write_text("x")
        assert free_path(target) == tmp_path / "a-1.md"
        (tmp_path / "a-1.md").write_text("y")
        assert free_path(target) == tmp_path / "a-2.md"
        assert free_path(target, current=target) == target

    def test_prune_empty_dirs(self, resolver: PathResolver):
        empty = resolver.ensure_day_structure(resolver.day_dir_for("2024-03-05"))
        full = resolver.ensure_day_structure(resolver.day_dir_for("2024-04-01"))
        (full / "imgs" / "x.png").write_bytes(b"x")

        prune_empty_dirs(resolver.paths.content_dir)
        assert not empty.exists()
        assert not empty.parent.exists()
        assert full.exists()
