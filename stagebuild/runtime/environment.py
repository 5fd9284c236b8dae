# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Build host checks for stagebuild.

The local backend runs every build command through a shell, in its own
process session so a cancelled command can be killed together with its
children. A host that can't do that is rejected before any environment is
instantiated.
"""

import os
import platform
import shutil
import sys
from typing import NamedTuple, Optional

MINIMUM_PYTHON = (3, 11)


class HostInfo(NamedTuple):
    python_version: str
    platform: str
    architecture: str
    hostname: str
    shell: Optional[str]


def get_python_version() -> tuple[int, int, int]:
    return sys.version_info[:3]


def _resolve_shell(shell: str) -> Optional[str]:
    return shutil.which(shell)


def check_host(shell: Optional[str] = None) -> None:
    """
    Verify the interpreter and host can drive builds.

    Args:
        shell: Build shell to look up; skipped when None.

    Raises:
        RuntimeError: Python older than 3.11, no POSIX process groups, or
            the build shell isn't an executable on this host.
    """
    major, minor, _ = get_python_version()
    if (major, minor) < MINIMUM_PYTHON:
        raise RuntimeError(
            f"stagebuild requires Python >= {MINIMUM_PYTHON[0]}.{MINIMUM_PYTHON[1]}, "
            f"but you're running {major}.{minor}. Please upgrade."
        )
    if not hasattr(os, "killpg"):
        raise RuntimeError(
            f"stagebuild needs POSIX process groups to cancel builds; "
            f"{platform.system()} does not provide them"
        )
    if shell is not None and _resolve_shell(shell) is None:
        raise RuntimeError(f"Build shell '{shell}' is not an executable on this host")


def describe_host(shell: Optional[str] = None) -> HostInfo:
    """Host facts logged at bootstrap and by `stagebuild info`."""
    return HostInfo(
        python_version=platform.python_version(),
        platform=platform.system(),
        architecture=platform.machine(),
        hostname=platform.node(),
        shell=_resolve_shell(shell) if shell is not None else None,
    )
