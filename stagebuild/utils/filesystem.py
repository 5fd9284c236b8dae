# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Filesystem operations for stagebuild.

Two rules run through everything here:
  - writes are atomic (no partial files on failure)
  - copies preserve permission and executable bits, because the artifacts we
    move around are mostly binaries

Atomic writes go to a temporary file in the target's own directory and are
then renamed over the target. Rename on the same filesystem is atomic on
POSIX.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional


def atomic_write(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    Args:
        target_path: Where the final file should end up.
        content: The string content to write.
        encoding: Text encoding to use.

    Raises:
        OSError: If the write or rename fails.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    # delete=False: the file must survive closing so it can be renamed.
    temp_fd = tempfile.NamedTemporaryFile(
        mode="w",
        encoding=encoding,
        dir=str(target_path.parent),
        prefix=".stagebuild_tmp_",
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        temp_fd.write(content)
        temp_fd.flush()
        temp_fd.close()
        temp_path.rename(target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def copy_entry(
    source: Path,
    destination: Path,
    ignore: Optional[Callable[[str, list[str]], set[str]]] = None,
) -> None:
    """
    Copy a file or directory tree, preserving modes and symlinks.

    Files go through shutil.copy2 so permission bits and timestamps survive.
    Directories go through copytree with symlinks=True so a link inside the
    tree is copied as a link, never followed out of the source environment.
    Parent directories of the destination are created as needed. A file is
    never copied into an existing directory: `destination` is the path the
    file ends up at.

    Raises:
        FileNotFoundError: If the source doesn't exist.
        IsADirectoryError: If a file would land on an existing directory.
        OSError: For any copy failure.
    """
    if not source.exists() and not source.is_symlink():
        raise FileNotFoundError(f"Source not found: {source}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    if source.is_dir() and not source.is_symlink():
        shutil.copytree(
            source,
            destination,
            symlinks=True,
            ignore=ignore,
            copy_function=shutil.copy2,
            dirs_exist_ok=True,
        )
    else:
        if destination.is_dir() and not destination.is_symlink():
            raise IsADirectoryError(f"Destination is an existing directory: {destination}")
        shutil.copy2(source, destination, follow_symlinks=False)


def overlay_tree(source_root: Path, destination_root: Path) -> None:
    """Copy the contents of one directory onto another, merging directories."""
    destination_root.mkdir(parents=True, exist_ok=True)
    for child in sorted(source_root.iterdir()):
        copy_entry(child, destination_root / child.name)


def remove_tree(path: Path) -> None:
    """Remove a directory tree or a single file if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def list_files(root: Path) -> list[str]:
    """
    Every file and symlink under root as sorted POSIX-style relative paths.

    Directories themselves are not listed. Symlinks are listed but never
    followed.
    """
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        for name in filenames:
            found.append((current / name).relative_to(root).as_posix())
        # os.walk reports symlinked directories under dirnames but never descends.
        for name in dirnames:
            if (current / name).is_symlink():
                found.append((current / name).relative_to(root).as_posix())
    return sorted(found)
