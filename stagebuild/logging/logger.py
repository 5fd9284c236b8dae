# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Structured JSON logger for stagebuild.

Every log entry is a single JSON line: timestamped, leveled, tagged with the
source module, and carrying whatever structured context the caller attached
through `extra` (stage id, command, exit status, artifact path...). Build logs
get grepped and diffed a lot, so free-form text output is avoided.

How this works:
  - Python's standard `logging` module does the plumbing; JsonFormatter
    replaces the default formatter and serializes each record.
  - A stdout handler is always attached, a file handler optionally.
  - `get_logger` is the one place loggers are created.

The JSON structure looks like:
  {"ts": "2026-...", "level": "INFO", "module": "stagebuild.pipeline.runner",
   "msg": "Stage succeeded", "stage": "builder", ...}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Attributes every LogRecord carries. Anything else on the record came from
# the caller's `extra` and belongs in the JSON object.
_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "relativeCreated",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "pathname",
        "filename",
        "module",
        "levelno",
        "levelname",
        "processName",
        "process",
        "threadName",
        "thread",
        "message",
        "msecs",
        "taskName",
    }
)


class JsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Mandatory fields:
      ts      ISO 8601 UTC timestamp
      level   log level name
      module  the logger name (usually the Python module path)
      msg     the formatted message string

    Fields passed through `extra` are merged in as additional keys. When the
    call carries exception info, the formatted traceback lands under `exc`.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _resolve_log_level(level_name: str) -> int:
    """Turn a level name string into the corresponding logging constant."""
    upper = level_name.upper()
    if upper not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{level_name}'. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    return getattr(logging, upper)


def get_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Create a structured JSON logger.

    Args:
        name: Logger name, typically __name__ of the calling module.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
        log_file: Optional path to a log file. If provided, logs go to both
                  stdout and the file.

    Returns:
        A configured logging.Logger that outputs structured JSON.
    """
    logger = logging.getLogger(name)
    level = _resolve_log_level(log_level)
    logger.setLevel(level)

    # get_logger runs once per module import and again from the CLI with the
    # requested level; only the first call attaches handlers.
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = JsonFormatter()

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def configure_package_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Re-level every stagebuild module logger that already exists.

    Module loggers are created at import time with the default level; the CLI
    calls this once it knows what the user asked for.
    """
    level = _resolve_log_level(log_level)
    for name in list(logging.Logger.manager.loggerDict):
        if name == "stagebuild" or name.startswith("stagebuild."):
            existing = logging.getLogger(name)
            existing.setLevel(level)
            for handler in existing.handlers:
                handler.setLevel(level)
            if log_file is not None and not any(
                isinstance(h, logging.FileHandler) for h in existing.handlers
            ):
                log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
                file_handler.setLevel(level)
                file_handler.setFormatter(JsonFormatter())
                existing.addHandler(file_handler)
