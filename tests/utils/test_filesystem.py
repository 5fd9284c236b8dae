# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for filesystem utilities: atomic writes, mode-preserving copies,
overlays and file listing.

Atomic writes are tested by verifying that the target file either has the full
new content or doesn't exist at all. There should never be a partially written
file.
"""

import os
import stat
from pathlib import Path

import pytest

from stagebuild.utils.filesystem import (
    atomic_write,
    copy_entry,
    list_files,
    overlay_tree,
    remove_tree,
)


class TestAtomicWrite:
    def test_writes_content_successfully(self, tmp_path: Path) -> None:
        target = tmp_path / "output.txt"
        atomic_write(target, "hello world")
        assert target.read_text(encoding="utf-8") == "hello world"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "deep" / "output.txt"
        atomic_write(target, "nested content")
        assert target.read_text(encoding="utf-8") == "nested content"

    def test_overwrites_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "overwrite.txt"
        atomic_write(target, "first version")
        atomic_write(target, "second version")
        assert target.read_text(encoding="utf-8") == "second version"

    def test_no_leftover_temp_files_on_success(self, tmp_path: Path) -> None:
        atomic_write(tmp_path / "clean.txt", "clean write")
        assert list(tmp_path.glob(".stagebuild_tmp_*")) == []


class TestCopyEntry:
    def test_preserves_executable_bit(self, tmp_path: Path) -> None:
        source = tmp_path / "drk"
        source.write_bytes(b"\x7fELF")
        source.chmod(0o755)

        destination = tmp_path / "out" / "bin" / "drk"
        copy_entry(source, destination)

        assert destination.read_bytes() == b"\x7fELF"
        assert stat.S_IMODE(destination.stat().st_mode) == 0o755

    def test_copies_directory_tree(self, tmp_path: Path) -> None:
        source = tmp_path / "share"
        (source / "doc").mkdir(parents=True)
        (source / "doc" / "README").write_text("docs", encoding="utf-8")

        copy_entry(source, tmp_path / "copy")
        assert (tmp_path / "copy" / "doc" / "README").read_text(encoding="utf-8") == "docs"

    def test_symlink_is_copied_as_link(self, tmp_path: Path) -> None:
        (tmp_path / "real").write_text("x", encoding="utf-8")
        link = tmp_path / "link"
        link.symlink_to("real")

        destination = tmp_path / "out" / "link"
        copy_entry(link, destination)
        assert destination.is_symlink()
        assert os.readlink(destination) == "real"

    def test_missing_source_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            copy_entry(tmp_path / "nope", tmp_path / "dest")

    def test_file_never_lands_inside_existing_directory(self, tmp_path: Path) -> None:
        source = tmp_path / "drk"
        source.write_bytes(b"\x7fELF")
        destination = tmp_path / "out" / "bin"
        destination.mkdir(parents=True)

        with pytest.raises(IsADirectoryError):
            copy_entry(source, destination)
        assert list(destination.iterdir()) == []


class TestOverlayTree:
    def test_merges_into_existing_directories(self, tmp_path: Path) -> None:
        base = tmp_path / "root"
        (base / "usr" / "bin").mkdir(parents=True)
        (base / "usr" / "bin" / "sh").write_text("sh", encoding="utf-8")

        package = tmp_path / "pkg"
        (package / "usr" / "bin").mkdir(parents=True)
        (package / "usr" / "bin" / "jq").write_text("jq", encoding="utf-8")

        overlay_tree(package, base)
        assert sorted(p.name for p in (base / "usr" / "bin").iterdir()) == ["jq", "sh"]


class TestRemoveTree:
    def test_removes_directory_and_file(self, tmp_path: Path) -> None:
        (tmp_path / "d" / "e").mkdir(parents=True)
        (tmp_path / "f").write_text("x", encoding="utf-8")
        remove_tree(tmp_path / "d")
        remove_tree(tmp_path / "f")
        assert not (tmp_path / "d").exists()
        assert not (tmp_path / "f").exists()

    def test_missing_path_is_a_no_op(self, tmp_path: Path) -> None:
        remove_tree(tmp_path / "never-existed")


class TestListFiles:
    def test_lists_files_sorted_and_relative(self, tmp_path: Path) -> None:
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "z.txt").write_text("z", encoding="utf-8")
        (tmp_path / "a.txt").write_text("a", encoding="utf-8")
        (tmp_path / "empty").mkdir()

        assert list_files(tmp_path) == ["a.txt", "b/z.txt"]

    def test_symlinked_directory_is_listed_not_followed(self, tmp_path: Path) -> None:
        (tmp_path / "real").mkdir()
        (tmp_path / "real" / "f").write_text("f", encoding="utf-8")
        (tmp_path / "alias").symlink_to("real", target_is_directory=True)

        assert list_files(tmp_path) == ["alias", "real/f"]
