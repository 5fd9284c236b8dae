# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The executable pipeline model.

A Pipeline is built once from a validated PipelineSpec plus the resolved
parameters. Building it interpolates every ${...} placeholder, normalizes
every in-environment path, and enforces the structural rules that make a
run well-defined:

  - stage identifiers are unique
  - ordinals strictly increase in declaration order
  - an artifact may only come from a stage with a strictly smaller ordinal
  - no two artifacts of a stage write the same destination, and no
    destination lies inside another
  - the terminal stage is built from artifacts only: it declares at least
    one and imports no source

Everything here is frozen. Execution state lives in StageRecord, owned by
the runner.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from stagebuild.pipeline.errors import DuplicateDestinationError, PipelineSpecError
from stagebuild.pipeline.parameters import BuildParameter, interpolate
from stagebuild.pipeline.spec import PipelineSpec, StageSpec
from stagebuild.utils.paths import normalize_env_path, paths_overlap


class StageState(str, Enum):
    PENDING = "PENDING"
    PROVISIONING = "PROVISIONING"
    IMPORTING = "IMPORTING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


_TRANSITIONS: dict[StageState, frozenset[StageState]] = {
    StageState.PENDING: frozenset({StageState.PROVISIONING, StageState.FAILED}),
    StageState.PROVISIONING: frozenset({StageState.IMPORTING, StageState.FAILED}),
    StageState.IMPORTING: frozenset({StageState.RUNNING, StageState.FAILED}),
    StageState.RUNNING: frozenset({StageState.SUCCEEDED, StageState.FAILED}),
    StageState.SUCCEEDED: frozenset(),
    StageState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class ArtifactReference:
    """A read-only copy of `source_path` in `source_stage` to `dest_path`."""

    source_stage: str
    source_path: str
    dest_path: str


@dataclass(frozen=True)
class SourceImport:
    dest_path: str
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True)
class Stage:
    """One isolated environment plus the ordered commands executed within it."""

    identifier: str
    base_environment: str
    ordinal: int
    packages: tuple[str, ...] = ()
    commands: tuple[str, ...] = ()
    source: Optional[SourceImport] = None
    workdir: str = "/"
    artifacts: tuple[ArtifactReference, ...] = ()


@dataclass(frozen=True)
class Pipeline:
    """Ordered stages. The terminal stage's artifacts name the deliverable."""

    name: str
    parameters: Mapping[str, str]
    stages: tuple[Stage, ...]

    @property
    def terminal(self) -> Stage:
        return self.stages[-1]

    def stage(self, identifier: str) -> Stage:
        for candidate in self.stages:
            if candidate.identifier == identifier:
                return candidate
        raise KeyError(identifier)


@dataclass
class StageRecord:
    """Mutable execution record for one stage: current state plus history."""

    identifier: str
    state: StageState = StageState.PENDING
    history: list[StageState] = field(default_factory=lambda: [StageState.PENDING])

    def transition(self, new_state: StageState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal stage transition {self.state.value} -> {new_state.value} "
                f"for stage '{self.identifier}'"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def is_terminal(self) -> bool:
        return self.state in (StageState.SUCCEEDED, StageState.FAILED)


def declared_parameters(spec: PipelineSpec) -> list[BuildParameter]:
    """The BuildParameters a spec declares, in declaration order."""
    seen: set[str] = set()
    params: list[BuildParameter] = []
    for param in spec.parameters:
        if param.name in seen:
            raise PipelineSpecError(f"Parameter '{param.name}' is declared more than once")
        seen.add(param.name)
        params.append(BuildParameter(name=param.name, default=param.default))
    return params


def _env_path(raw: str, resolved: Mapping[str, str], stage_id: str, what: str) -> str:
    value = interpolate(raw, resolved)
    try:
        return str(normalize_env_path(value))
    except ValueError as err:
        raise PipelineSpecError(f"Invalid {what} '{value}': {err}", stage=stage_id) from err


def _build_stage(
    stage_spec: StageSpec,
    resolved: Mapping[str, str],
    earlier: Mapping[str, int],
) -> Stage:
    stage_id = stage_spec.id

    try:
        base = interpolate(stage_spec.base, resolved)
        packages = tuple(interpolate(pkg, resolved) for pkg in stage_spec.packages)
        commands = tuple(interpolate(cmd, resolved) for cmd in stage_spec.commands)
    except PipelineSpecError as err:
        err.with_stage(stage_id)
        raise

    if not base.strip():
        raise PipelineSpecError("Base environment resolves to an empty string", stage=stage_id)

    source = None
    if stage_spec.source is not None:
        source = SourceImport(
            dest_path=_env_path(stage_spec.source.dest, resolved, stage_id, "source destination"),
            exclude=tuple(stage_spec.source.exclude),
        )

    if stage_spec.workdir is not None:
        workdir = _env_path(stage_spec.workdir, resolved, stage_id, "workdir")
    elif source is not None:
        workdir = source.dest_path
    else:
        workdir = "/"

    artifacts: list[ArtifactReference] = []
    destinations: list[str] = []
    for artifact in stage_spec.artifacts:
        if artifact.from_stage not in earlier:
            if artifact.from_stage == stage_id:
                problem = "references itself"
            else:
                problem = "references a stage that is not earlier in the pipeline"
            raise PipelineSpecError(
                f"Artifact {problem}: '{artifact.from_stage}'",
                stage=stage_id,
            )
        if earlier[artifact.from_stage] >= stage_spec.ordinal:
            raise PipelineSpecError(
                f"Artifact source stage '{artifact.from_stage}' does not have a smaller ordinal",
                stage=stage_id,
            )
        dest_path = _env_path(artifact.to_path, resolved, stage_id, "artifact destination")
        for claimed in destinations:
            if paths_overlap(dest_path, claimed):
                raise DuplicateDestinationError(dest_path, stage=stage_id, conflicts_with=claimed)
        destinations.append(dest_path)
        artifacts.append(
            ArtifactReference(
                source_stage=artifact.from_stage,
                source_path=_env_path(artifact.path, resolved, stage_id, "artifact path"),
                dest_path=dest_path,
            )
        )

    return Stage(
        identifier=stage_id,
        base_environment=base,
        ordinal=stage_spec.ordinal,
        packages=packages,
        commands=commands,
        source=source,
        workdir=workdir,
        artifacts=tuple(artifacts),
    )


def _check_terminal(stage: Stage) -> None:
    # The terminal environment is exported whole as the deliverable.
    if not stage.artifacts:
        raise PipelineSpecError(
            "The final stage must name at least one artifact; it becomes the deliverable",
            stage=stage.identifier,
        )
    if stage.source is not None:
        raise PipelineSpecError(
            "The final stage must not import the source tree; it becomes the deliverable",
            stage=stage.identifier,
        )


def build_pipeline(spec: PipelineSpec, resolved: Mapping[str, str]) -> Pipeline:
    """
    Construct the executable Pipeline from a spec and resolved parameters.

    Raises:
        PipelineSpecError: Structural problems (ids, ordinals, references,
            placeholders, paths).
        DuplicateDestinationError: Two artifacts of one stage share or nest
            their destinations.
    """
    earlier: dict[str, int] = {}
    stages: list[Stage] = []
    previous_ordinal: Optional[int] = None

    for stage_spec in spec.stages:
        if stage_spec.id in earlier:
            raise PipelineSpecError(
                f"Stage identifier '{stage_spec.id}' is used more than once",
                stage=stage_spec.id,
            )
        if previous_ordinal is not None and stage_spec.ordinal <= previous_ordinal:
            raise PipelineSpecError(
                f"Stage ordinal {stage_spec.ordinal} is not greater than the "
                f"previous stage's ordinal {previous_ordinal}",
                stage=stage_spec.id,
            )

        stages.append(_build_stage(stage_spec, resolved, earlier))
        earlier[stage_spec.id] = stage_spec.ordinal
        previous_ordinal = stage_spec.ordinal

    _check_terminal(stages[-1])
    return Pipeline(name=spec.name, parameters=resolved, stages=tuple(stages))


def describe_pipeline(pipeline: Pipeline) -> dict[str, Any]:
    """A JSON-serializable view of a resolved pipeline, for `plan` and dry runs."""
    return {
        "name": pipeline.name,
        "parameters": dict(pipeline.parameters),
        "stages": [
            {
                "id": stage.identifier,
                "ordinal": stage.ordinal,
                "base": stage.base_environment,
                "packages": list(stage.packages),
                "source": (
                    {"dest": stage.source.dest_path, "exclude": list(stage.source.exclude)}
                    if stage.source is not None
                    else None
                ),
                "workdir": stage.workdir,
                "commands": list(stage.commands),
                "artifacts": [
                    {
                        "from_stage": ref.source_stage,
                        "path": ref.source_path,
                        "to_path": ref.dest_path,
                    }
                    for ref in stage.artifacts
                ],
            }
            for stage in pipeline.stages
        ],
        "deliverable_stage": pipeline.terminal.identifier,
    }
