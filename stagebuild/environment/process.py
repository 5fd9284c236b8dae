# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subprocess execution for build commands and package installers.

Run the process, capture everything (stderr folded into stdout so the
diagnostic reads in order), honour the cancellation token, and return a
structured result. No shell=True: shell commands are passed explicitly as
[shell, "-c", command] by the caller.

Cancellation is checked every POLL_INTERVAL_SECONDS while the process is
alive. Each process runs in its own session so a cancelled or timed-out
command takes its children (make, cc, ...) down with it.
"""

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import PipelineCancelled

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.1
TIMEOUT_EXIT_STATUS = -1
NOT_FOUND_EXIT_STATUS = 127
NOT_EXECUTABLE_EXIT_STATUS = 126


@dataclass(frozen=True)
class ProcessOutcome:
    """What happened when a process ran."""

    exit_status: int
    output: str
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_status == 0


def _kill_group(proc: subprocess.Popen) -> None:  # type: ignore[type-arg]
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


def run_process(
    argv: Sequence[str],
    cwd: Path,
    env: Mapping[str, str],
    cancel: Optional[CancelToken] = None,
    timeout_seconds: Optional[float] = None,
) -> ProcessOutcome:
    """
    Run argv in cwd and wait for it, polling for cancellation.

    A missing executable is reported as exit status 127, and one that can't
    be started (not executable, permission denied) as 126, the way a shell
    reports them, rather than raised. A timeout kills the process group and is
    reported as exit status -1 with a note appended to the output.

    Raises:
        PipelineCancelled: If the token fires while the process is running.
            The process group is killed before raising.
    """
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except FileNotFoundError:
        logger.error("Executable not found", extra={"argv0": argv[0], "cwd": str(cwd)})
        return ProcessOutcome(
            exit_status=NOT_FOUND_EXIT_STATUS,
            output=f"{argv[0]}: executable not found\n",
            elapsed_seconds=time.monotonic() - start,
        )
    except OSError as err:
        logger.error(
            "Executable could not be started",
            extra={"argv0": argv[0], "cwd": str(cwd), "error": str(err)},
        )
        return ProcessOutcome(
            exit_status=NOT_EXECUTABLE_EXIT_STATUS,
            output=f"{argv[0]}: {err.strerror or err}\n",
            elapsed_seconds=time.monotonic() - start,
        )

    chunks: list[str] = []
    while True:
        try:
            out, _ = proc.communicate(timeout=POLL_INTERVAL_SECONDS)
            if out:
                chunks.append(out)
            break
        except subprocess.TimeoutExpired:
            pass

        if cancel is not None and cancel.is_cancelled:
            _kill_group(proc)
            proc.communicate()
            logger.warning(
                "Process killed on cancellation",
                extra={"argv0": argv[0], "pid": proc.pid},
            )
            raise PipelineCancelled()

        elapsed = time.monotonic() - start
        if timeout_seconds is not None and elapsed > timeout_seconds:
            _kill_group(proc)
            out, _ = proc.communicate()
            if out:
                chunks.append(out)
            chunks.append(f"\nTimed out after {timeout_seconds}s\n")
            logger.warning(
                "Process timed out",
                extra={"argv0": argv[0], "timeout_seconds": timeout_seconds},
            )
            return ProcessOutcome(
                exit_status=TIMEOUT_EXIT_STATUS,
                output="".join(chunks),
                elapsed_seconds=time.monotonic() - start,
            )

    elapsed = time.monotonic() - start
    logger.debug(
        "Process finished",
        extra={
            "argv0": argv[0],
            "exit_status": proc.returncode,
            "elapsed_seconds": round(elapsed, 3),
        },
    )
    return ProcessOutcome(
        exit_status=proc.returncode,
        output="".join(chunks),
        elapsed_seconds=elapsed,
    )
