# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Layer cache for provisioned environments.

A provisioned (base, packages) root is snapshotted under a key derived from
the base identifier and the ordered package list. A later provision of the
same pair restores the snapshot instead of reinstalling. Correctness never
depends on the cache: a miss just means provisioning from scratch, and a
snapshot is only published once it's complete.

The key covers identifiers only, not the content behind them. Changing a base
template or a package in the index means clearing the cache directory.
"""

import shutil
import uuid
from pathlib import Path
from typing import Optional, Sequence

from stagebuild.logging.logger import get_logger
from stagebuild.utils.hashing import compute_sha256_parts

logger = get_logger(__name__)


class LayerCache:
    def __init__(self, cache_dir: Path) -> None:
        self._cache_dir = cache_dir

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @staticmethod
    def key(base: str, packages: Sequence[str]) -> str:
        return compute_sha256_parts([base, *packages])

    def lookup(self, base: str, packages: Sequence[str]) -> Optional[Path]:
        """The snapshot directory for (base, packages), or None on a miss."""
        snapshot = self._cache_dir / self.key(base, packages)
        if snapshot.is_dir():
            logger.debug("Layer cache hit", extra={"base": base, "packages": list(packages)})
            return snapshot
        return None

    def store(self, base: str, packages: Sequence[str], root: Path) -> Path:
        """
        Snapshot a provisioned root. The copy is staged under a temporary name
        and renamed into place, so a reader never sees a half-written layer.
        If another run published the same layer first, that one is kept.
        """
        key = self.key(base, packages)
        snapshot = self._cache_dir / key
        if snapshot.is_dir():
            return snapshot

        self._cache_dir.mkdir(parents=True, exist_ok=True)
        staging = self._cache_dir / f".{key}.{uuid.uuid4().hex}.partial"
        try:
            shutil.copytree(root, staging, symlinks=True, copy_function=shutil.copy2)
            staging.rename(snapshot)
        except OSError:
            shutil.rmtree(staging, ignore_errors=True)
            if not snapshot.is_dir():
                raise
        logger.info(
            "Layer cached",
            extra={"base": base, "packages": list(packages), "key": key[:16]},
        )
        return snapshot
