# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
EnvironmentHandle: the explicit value passed between pipeline components.

Components never assume an ambient working directory. Whatever environment
they act on arrives as a handle, and in-environment paths are mapped through
it onto the host directory that backs the environment.
"""

from dataclasses import dataclass
from pathlib import Path

from stagebuild.utils.paths import resolve_in_root


@dataclass(frozen=True)
class EnvironmentHandle:
    """
    One isolated environment instance.

    env_id is unique per instantiation, base is the identifier it was
    instantiated from, and root is the host directory holding its
    filesystem.
    """

    env_id: str
    base: str
    root: Path

    def path(self, env_path: str) -> Path:
        """
        Host path for an in-environment path like "/opt/build/drk".

        Raises:
            ValueError: If the path escapes the environment root.
        """
        return resolve_in_root(self.root, env_path)
