# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for stagebuild.

The one-time setup every command goes through before doing real work:
  1. Validate the host (Python version, process groups, build shell)
  2. Configure logging from the tool config and the command line

The environment workspace is not created here; the backend creates it on
first instantiation, so read-only commands leave no trace on disk.
"""

import logging
from pathlib import Path
from typing import Optional

from stagebuild.config.schema import GlobalConfig
from stagebuild.logging.logger import configure_package_logging, get_logger
from stagebuild.runtime.environment import check_host, describe_host


def bootstrap(
    config: GlobalConfig,
    base_dir: Path,
    log_level: Optional[str] = None,
    shell: Optional[str] = None,
) -> logging.Logger:
    """
    Run the bootstrap sequence and return the runtime logger.

    Args:
        config: The validated global configuration.
        base_dir: Directory a relative log_file is resolved against.
        log_level: Command-line level; takes precedence over the config's.
        shell: Build shell that must exist on the host, when the command
            runs builds.

    Raises:
        RuntimeError: The host can't run builds.
    """
    check_host(shell)

    level = log_level or config.log_level
    log_file = None
    if config.log_file is not None:
        log_file = Path(config.log_file)
        if not log_file.is_absolute():
            log_file = base_dir / log_file

    logger = get_logger("stagebuild.runtime", log_level=level, log_file=log_file)
    configure_package_logging(level, log_file)

    host = describe_host(shell)
    logger.debug(
        "stagebuild bootstrap complete",
        extra={
            "project": config.project_name,
            "python_version": host.python_version,
            "platform": host.platform,
            "architecture": host.architecture,
            "shell": host.shell,
        },
    )
    return logger
