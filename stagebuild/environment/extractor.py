# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Stage transition: build a fresh environment out of named artifacts.

The new environment is instantiated from its own base, never derived from a
build environment, so no toolchain, cache or intermediate file comes along.
Each ArtifactReference is then copied, read-only and never moved, from the
final state of its (completed) source stage. Permissions and executable bits
are preserved.

Any failure tears the new environment down before propagating. There is no
partial deliverable.
"""

from typing import Mapping, Optional, Sequence

from stagebuild.environment.backend import EnvironmentBackend
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import (
    ArtifactCopyError,
    DuplicateDestinationError,
    MissingArtifactError,
    PipelineSpecError,
)
from stagebuild.pipeline.model import ArtifactReference
from stagebuild.utils.filesystem import copy_entry
from stagebuild.utils.paths import paths_overlap

logger = get_logger(__name__)


def _check_references(
    references: Sequence[ArtifactReference],
    completed: Mapping[str, EnvironmentHandle],
) -> None:
    destinations: list[str] = []
    for ref in references:
        if ref.source_stage not in completed:
            raise PipelineSpecError(
                f"Artifact source stage '{ref.source_stage}' has not completed successfully"
            )
        for claimed in destinations:
            if paths_overlap(ref.dest_path, claimed):
                raise DuplicateDestinationError(ref.dest_path, conflicts_with=claimed)
        destinations.append(ref.dest_path)


def _copy_reference(
    ref: ArtifactReference,
    source_env: EnvironmentHandle,
    target_env: EnvironmentHandle,
) -> None:
    try:
        source = source_env.path(ref.source_path)
    except ValueError as err:
        raise MissingArtifactError(ref.source_stage, ref.source_path) from err

    if not source.exists() and not source.is_symlink():
        raise MissingArtifactError(ref.source_stage, ref.source_path)

    try:
        destination = target_env.path(ref.dest_path)
        copy_entry(source, destination)
    except (OSError, ValueError) as err:
        raise ArtifactCopyError(
            f"Cannot copy '{ref.source_path}' from '{ref.source_stage}' to '{ref.dest_path}'",
            details=str(err),
        ) from err


def extract(
    backend: EnvironmentBackend,
    target_base: str,
    references: Sequence[ArtifactReference],
    completed: Mapping[str, EnvironmentHandle],
    cancel: Optional[CancelToken] = None,
) -> EnvironmentHandle:
    """
    Instantiate a new environment from `target_base` and copy every
    referenced artifact into it.

    `completed` maps stage identifiers to the final environments of stages
    that finished successfully. Extraction runs in declaration order; the
    references are independent, so the order doesn't affect the result.

    Raises:
        PipelineSpecError: A reference names a stage that hasn't completed.
        DuplicateDestinationError: Two references share a destination, or
            one destination lies inside another.
        ProvisionError: The target base couldn't be instantiated.
        MissingArtifactError: A referenced path doesn't exist in its stage.
        ArtifactCopyError: The copy itself failed.
        PipelineCancelled: The token fired.
    """
    _check_references(references, completed)
    if cancel is not None:
        cancel.raise_if_cancelled()

    env = backend.instantiate(target_base)
    try:
        for ref in references:
            if cancel is not None:
                cancel.raise_if_cancelled()
            _copy_reference(ref, completed[ref.source_stage], env)
            logger.info(
                "Artifact extracted",
                extra={
                    "from_stage": ref.source_stage,
                    "path": ref.source_path,
                    "to_path": ref.dest_path,
                    "env_id": env.env_id,
                },
            )
    except BaseException:
        backend.teardown(env)
        raise

    return env
