# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Path utilities for stagebuild.

Paths inside an environment are written the way a build author thinks of
them, absolute from the environment's own root ("/opt/build/drk"). These
helpers map them onto the host directory backing the environment and make
sure nothing escapes it.
"""

from pathlib import Path, PurePosixPath


def ensure_directory(path: Path) -> Path:
    """Create a directory (and parents) if it doesn't exist. Returns the path for chaining."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def normalize_env_path(env_path: str) -> PurePosixPath:
    """
    Normalize an in-environment path to a clean absolute POSIX path.

    "opt//build/./x" and "/opt/build/x" both become "/opt/build/x". Any ".."
    component is rejected outright rather than resolved, since there is no
    legitimate reason for a build spec to climb.

    Raises:
        ValueError: If the path is empty or contains "..".
    """
    if not env_path or not env_path.strip():
        raise ValueError("Environment path must not be empty")
    parts = [p for p in PurePosixPath(env_path).parts if p not in ("/", ".")]
    if ".." in parts:
        raise ValueError(f"Environment path must not contain '..': {env_path}")
    return PurePosixPath("/", *parts)


def resolve_in_root(root: Path, env_path: str) -> Path:
    """
    Map an in-environment path onto the host directory backing the environment.

    The parent directory is checked to still sit under `root` after symlink
    resolution, which catches directory links planted inside the environment
    that point outside. The final component is not followed: a symlink
    artifact is copied as a link, not as whatever it points to.

    Raises:
        ValueError: If the path escapes the environment root.
    """
    normalized = normalize_env_path(env_path)
    relative = normalized.relative_to("/")
    if not relative.parts:
        return root
    target = root / Path(*relative.parts)

    resolved = target.parent.resolve()
    root_resolved = root.resolve()
    if resolved != root_resolved and root_resolved not in resolved.parents:
        raise ValueError(
            f"Path '{env_path}' resolves to '{resolved}' which is outside "
            f"the environment root '{root_resolved}'. This is not allowed."
        )
    return target


def paths_overlap(first: str, second: str) -> bool:
    """True when two normalized environment paths are equal or one contains the other."""
    a, b = PurePosixPath(first), PurePosixPath(second)
    return a == b or a in b.parents or b in a.parents
