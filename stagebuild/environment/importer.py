# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Source import: copy the invocation's source tree into an environment.

The import is atomic from the pipeline's point of view. The tree is copied
into a hidden staging directory next to the destination and renamed into
place only once the copy is complete. On failure the staging directory and
any parent directories the import created are removed, so later steps never
observe a partially imported tree.
"""

import os
import shutil
import uuid
from pathlib import Path
from typing import Callable, Optional, Sequence

from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import SourceImportError

logger = get_logger(__name__)


def _first_missing_ancestor(path: Path, stop: Path) -> Optional[Path]:
    """The outermost ancestor of `path` (below `stop`) that doesn't exist yet."""
    missing = None
    current = path
    while current != stop and not current.exists():
        missing = current
        current = current.parent
    return missing


def _ignore_for(
    exclude: Sequence[str],
    skip_paths: Sequence[Path],
) -> Callable[[str, list[str]], set[str]]:
    patterns = shutil.ignore_patterns(*exclude) if exclude else None
    skipped = {path.resolve() for path in skip_paths}

    def _ignore(directory: str, names: list[str]) -> set[str]:
        ignored = set(patterns(directory, names)) if patterns is not None else set()
        parent = Path(directory).resolve()
        ignored.update(name for name in names if parent / name in skipped)
        return ignored

    return _ignore


def import_source(
    env: EnvironmentHandle,
    source_tree: Optional[Path],
    dest_path: str,
    exclude: Sequence[str] = (),
    cancel: Optional[CancelToken] = None,
    skip_paths: Sequence[Path] = (),
) -> Path:
    """
    Copy `source_tree` into the environment at `dest_path`, preserving
    relative structure.

    `exclude` holds glob patterns matched against each entry name, the way
    shutil.ignore_patterns matches ("*.o", ".git", "target"). `skip_paths` are
    host directories that are never copied even when they sit inside the
    source tree, such as the backend workspace and the layer cache. The
    environment's own root is always skipped.

    Returns:
        Host path of the imported tree.

    Raises:
        SourceImportError: The tree is missing or unreadable, dest_path
            escapes the environment, the destination already holds content,
            or the copy failed.
        PipelineCancelled: The token fired before the copy started.
    """
    source_label = str(source_tree) if source_tree is not None else "(none)"

    if source_tree is None:
        raise SourceImportError(source_label, dest_path, details="no source tree was supplied")
    if not source_tree.is_dir():
        raise SourceImportError(source_label, dest_path, details="source tree is not a directory")
    if not os.access(source_tree, os.R_OK | os.X_OK):
        raise SourceImportError(source_label, dest_path, details="source tree is not readable")

    try:
        target = env.path(dest_path)
    except ValueError as err:
        raise SourceImportError(source_label, dest_path, details=str(err)) from err

    if target.exists() or target.is_symlink():
        if not target.is_dir() or target.is_symlink() or any(target.iterdir()):
            raise SourceImportError(
                source_label,
                dest_path,
                details="destination already exists and is not an empty directory",
            )

    if cancel is not None:
        cancel.raise_if_cancelled()

    created_ancestor = _first_missing_ancestor(target.parent, env.root)
    staging = target.parent / f".stagebuild-import-{uuid.uuid4().hex}"
    ignore = _ignore_for(exclude, [env.root, *skip_paths])

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            source_tree,
            staging,
            symlinks=True,
            ignore=ignore,
            copy_function=shutil.copy2,
        )
        if target.is_dir():
            target.rmdir()
        staging.rename(target)
    except (OSError, shutil.Error) as err:
        shutil.rmtree(staging, ignore_errors=True)
        if created_ancestor is not None:
            shutil.rmtree(created_ancestor, ignore_errors=True)
        raise SourceImportError(source_label, dest_path, details=str(err)) from err

    logger.info(
        "Source imported",
        extra={"env_id": env.env_id, "source": source_label, "dest": dest_path},
    )
    return target
