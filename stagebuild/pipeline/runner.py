# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Pipeline execution.

run_pipeline drives a built Pipeline through its stages, one at a time, in
ordinal order. Each stage walks the state machine

    PENDING -> PROVISIONING -> IMPORTING -> RUNNING -> SUCCEEDED | FAILED

  PROVISIONING  instantiate the stage's base (fresh, or built from earlier
                stages' artifacts when the stage names any) and install its
                packages
  IMPORTING     copy the source tree in, if the stage asks for it
  RUNNING       run its commands in order

The first error fails its stage and aborts the pipeline: no later stage
begins. Every environment the run created is torn down on the way out,
success or failure. On success the terminal stage's environment is exported
to the destination before teardown.

execute_build_request is the invocation surface: it takes a BuildRequest,
does the loading and resolving, and always returns exactly one of Success or
Failure.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from stagebuild.config.exceptions import ConfigError
from stagebuild.deliverable.manifest import (
    DeliverableManifest,
    create_manifest,
    default_manifest_path,
    write_manifest,
)
from stagebuild.environment.backend import EnvironmentBackend
from stagebuild.environment.cache import LayerCache
from stagebuild.environment.executor import execute
from stagebuild.environment.extractor import extract
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.environment.importer import import_source
from stagebuild.environment.provisioner import install_packages, provision
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import DeliverableError, PipelineError
from stagebuild.pipeline.model import (
    Pipeline,
    Stage,
    StageRecord,
    StageState,
    build_pipeline,
    declared_parameters,
)
from stagebuild.pipeline.parameters import environment_variables, resolve
from stagebuild.pipeline.spec import load_pipeline_spec
from stagebuild.utils.filesystem import remove_tree

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class BuildRequest:
    """Everything a caller supplies to run a pipeline once."""

    spec_path: Path
    overrides: Mapping[str, str]
    source_tree: Optional[Path]
    destination: Path
    manifest_path: Optional[Path] = None


@dataclass(frozen=True)
class Success:
    produced_environment: Path
    manifest: DeliverableManifest
    manifest_path: Path


@dataclass(frozen=True)
class Failure:
    stage_identifier: Optional[str]
    reason_code: str
    message: str
    details: str = ""


PipelineOutcome = Union[Success, Failure]


@dataclass
class PipelineRun:
    """Per-invocation execution state. Discarded once the run ends."""

    pipeline: Pipeline
    records: dict[str, StageRecord] = field(default_factory=dict)
    environments: dict[str, EnvironmentHandle] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for stage in self.pipeline.stages:
            self.records[stage.identifier] = StageRecord(stage.identifier)


def _enter(record: StageRecord, state: StageState) -> None:
    record.transition(state)
    _logger.debug("Stage state", extra={"stage": record.identifier, "state": state.value})


def _host_state_dirs(backend: EnvironmentBackend, cache: Optional[LayerCache]) -> list[Path]:
    dirs = list(backend.host_directories)
    if cache is not None:
        dirs.append(cache.cache_dir)
    return dirs


def _run_stage(
    stage: Stage,
    run: PipelineRun,
    backend: EnvironmentBackend,
    source_tree: Optional[Path],
    variables: Mapping[str, str],
    cancel: CancelToken,
    cache: Optional[LayerCache],
) -> EnvironmentHandle:
    record = run.records[stage.identifier]

    _enter(record, StageState.PROVISIONING)
    if stage.artifacts:
        env = extract(backend, stage.base_environment, stage.artifacts, run.environments, cancel)
        try:
            install_packages(backend, env, stage.packages, cancel)
        except BaseException:
            backend.teardown(env)
            raise
    else:
        env = provision(backend, stage.base_environment, stage.packages, cancel, cache)

    try:
        _enter(record, StageState.IMPORTING)
        if stage.source is not None:
            import_source(
                env,
                source_tree,
                stage.source.dest_path,
                exclude=stage.source.exclude,
                cancel=cancel,
                skip_paths=_host_state_dirs(backend, cache),
            )

        _enter(record, StageState.RUNNING)
        result = execute(
            backend,
            env,
            stage.commands,
            workdir=stage.workdir,
            variables=variables,
            cancel=cancel,
        )
    except BaseException:
        backend.teardown(env)
        raise

    _enter(record, StageState.SUCCEEDED)
    return result.env


def run_pipeline(
    pipeline: Pipeline,
    backend: EnvironmentBackend,
    source_tree: Optional[Path],
    destination: Path,
    cancel: Optional[CancelToken] = None,
    cache: Optional[LayerCache] = None,
) -> PipelineRun:
    """
    Execute every stage in order and export the terminal stage's environment
    to `destination`.

    Returns:
        The finished PipelineRun, with each stage's record.

    Raises:
        PipelineError: The first failure of any stage, with `stage` set. No
            deliverable exists at `destination` afterwards and no
            environment survives.
    """
    cancel = cancel if cancel is not None else CancelToken()
    run = PipelineRun(pipeline=pipeline)
    variables = environment_variables(pipeline.parameters)

    if destination.exists():
        raise DeliverableError(f"Destination already exists: {destination}")

    _logger.info(
        "Pipeline started",
        extra={"pipeline": pipeline.name, "stages": [s.identifier for s in pipeline.stages]},
    )

    try:
        for stage in pipeline.stages:
            record = run.records[stage.identifier]
            _logger.info(
                "Stage started",
                extra={"stage": stage.identifier, "ordinal": stage.ordinal, "base": stage.base_environment},
            )
            try:
                cancel.raise_if_cancelled()
                env = _run_stage(stage, run, backend, source_tree, variables, cancel, cache)
            except PipelineError as err:
                err.with_stage(stage.identifier)
                if not record.is_terminal:
                    _enter(record, StageState.FAILED)
                _logger.error(
                    "Stage failed",
                    extra={
                        "stage": stage.identifier,
                        "reason_code": err.reason_code,
                        "error": err.message,
                    },
                )
                raise
            run.environments[stage.identifier] = env
            _logger.info("Stage succeeded", extra={"stage": stage.identifier})

        terminal = pipeline.terminal
        try:
            backend.export(run.environments[terminal.identifier], destination)
        except OSError as err:
            raise DeliverableError(
                f"Cannot export deliverable to {destination}",
                stage=terminal.identifier,
                details=str(err),
            ) from err
    finally:
        for env in run.environments.values():
            backend.teardown(env)

    _logger.info(
        "Pipeline succeeded",
        extra={"pipeline": pipeline.name, "deliverable": str(destination)},
    )
    return run


def prepare_pipeline(spec_path: Path, overrides: Mapping[str, str]) -> Pipeline:
    """
    Load a spec, resolve its parameters once, and build the Pipeline.

    Raises:
        ConfigError: The spec file can't be read or fails schema validation.
        PipelineError: Unknown overrides or structural spec problems.
    """
    spec = load_pipeline_spec(spec_path)
    resolved = resolve(declared_parameters(spec), overrides)
    _logger.info("Parameters resolved", extra={"parameters": dict(resolved)})
    return build_pipeline(spec, resolved)


def execute_build_request(
    request: BuildRequest,
    backend: EnvironmentBackend,
    cancel: Optional[CancelToken] = None,
    cache: Optional[LayerCache] = None,
) -> PipelineOutcome:
    """
    Run a build request end to end and report exactly one outcome.

    Spec loading problems are reported as a Failure with reason code
    "ConfigError"; pipeline failures carry their own reason code and stage.
    """
    manifest_path = request.manifest_path or default_manifest_path(request.destination)
    destination = request.destination.resolve()
    resolved_manifest = manifest_path.resolve()
    if resolved_manifest == destination or destination in resolved_manifest.parents:
        return Failure(
            stage_identifier=None,
            reason_code=DeliverableError.reason_code,
            message=f"Manifest path {manifest_path} lies inside the deliverable {request.destination}",
        )

    try:
        pipeline = prepare_pipeline(request.spec_path, request.overrides)
        run_pipeline(pipeline, backend, request.source_tree, request.destination, cancel, cache)
    except ConfigError as err:
        return Failure(stage_identifier=None, reason_code="ConfigError", message=str(err))
    except PipelineError as err:
        return Failure(
            stage_identifier=err.stage,
            reason_code=err.reason_code,
            message=err.message,
            details=err.details,
        )

    try:
        manifest = create_manifest(
            pipeline.name,
            pipeline.parameters,
            [stage.identifier for stage in pipeline.stages],
            request.destination,
        )
        write_manifest(manifest, manifest_path)
    except OSError as err:
        # A deliverable without its manifest is not left behind.
        remove_tree(request.destination)
        return Failure(
            stage_identifier=pipeline.terminal.identifier,
            reason_code=DeliverableError.reason_code,
            message=f"Cannot write manifest {manifest_path}",
            details=str(err),
        )

    return Success(
        produced_environment=request.destination,
        manifest=manifest,
        manifest_path=manifest_path,
    )
