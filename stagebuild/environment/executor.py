# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Build execution: run a stage's commands in order inside its environment.

Commands compose sequentially. Each one sees the filesystem the previous
one left behind, and the first non-zero exit halts the stage. No command
after a failure is attempted: "make test" assumes "make clean" ran, and
"make" assumes the tests passed. There is no retry; retry policy belongs to
whoever invoked the pipeline.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from stagebuild.environment.backend import EnvironmentBackend
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import BuildFailure

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandOutput:
    command: str
    exit_status: int
    output: str
    elapsed_seconds: float


@dataclass(frozen=True)
class ExecutionResult:
    """
    A successful run. `env` is the environment in its final state, the only
    thing a later stage may extract from.
    """

    env: EnvironmentHandle
    outputs: tuple[CommandOutput, ...]

    @property
    def commands_run(self) -> tuple[str, ...]:
        return tuple(out.command for out in self.outputs)


def execute(
    backend: EnvironmentBackend,
    env: EnvironmentHandle,
    commands: Sequence[str],
    workdir: str = "/",
    variables: Optional[Mapping[str, str]] = None,
    cancel: Optional[CancelToken] = None,
) -> ExecutionResult:
    """
    Run each command in declared order in the environment's working directory.

    Raises:
        BuildFailure: On the first command that exits non-zero, carrying the
            command, its exit status and its captured output. Nothing after
            it runs.
        PipelineCancelled: The token fired between or during commands.
    """
    outputs: list[CommandOutput] = []

    for index, command in enumerate(commands, start=1):
        if cancel is not None:
            cancel.raise_if_cancelled()

        logger.info(
            "Running command",
            extra={"env_id": env.env_id, "step": index, "total": len(commands), "command": command},
        )

        try:
            outcome = backend.run(env, command, workdir=workdir, variables=variables, cancel=cancel)
        except (OSError, ValueError) as err:
            raise BuildFailure(command, -1, f"cannot run command in {workdir}: {err}") from err

        outputs.append(
            CommandOutput(
                command=command,
                exit_status=outcome.exit_status,
                output=outcome.output,
                elapsed_seconds=outcome.elapsed_seconds,
            )
        )

        if not outcome.success:
            logger.error(
                "Command failed",
                extra={
                    "env_id": env.env_id,
                    "command": command,
                    "exit_status": outcome.exit_status,
                    "skipped": len(commands) - index,
                },
            )
            raise BuildFailure(command, outcome.exit_status, outcome.output)

        logger.info(
            "Command succeeded",
            extra={
                "env_id": env.env_id,
                "command": command,
                "elapsed_seconds": round(outcome.elapsed_seconds, 3),
            },
        )

    return ExecutionResult(env=env, outputs=tuple(outputs))
