# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Error taxonomy for pipeline execution.

Every error here is fatal to the pipeline as a whole: no local recovery, no
automatic retry, no partial deliverable. Each one carries a reason code (the
stable name reported to callers), the stage it happened in when there is
one, and a details string with the underlying tool's diagnostics so the
caller can act without re-running at higher verbosity.
"""

from typing import Optional, Sequence


class PipelineError(Exception):
    """Base for every pipeline failure."""

    reason_code: str = "PipelineError"

    def __init__(self, message: str, stage: Optional[str] = None, details: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details = details

    def with_stage(self, stage: str) -> "PipelineError":
        """Attach the stage identifier if the raising component didn't know it."""
        if self.stage is None:
            self.stage = stage
        return self


class PipelineSpecError(PipelineError):
    """
    The declarative spec parsed, but describes an impossible pipeline:
    non-increasing ordinals, a forward or self artifact reference, a
    placeholder naming an undeclared parameter, a duplicate stage id.
    """

    reason_code = "PipelineSpecError"


class ParameterFormatError(PipelineError):
    """An override given on the command line isn't of the form name=value."""

    reason_code = "ParameterFormatError"


class UnknownParameterError(PipelineError):
    """An override names a parameter the pipeline doesn't declare."""

    reason_code = "UnknownParameterError"

    def __init__(self, names: Sequence[str], declared: Sequence[str]) -> None:
        self.names = tuple(sorted(names))
        super().__init__(
            f"Unknown build parameter(s): {', '.join(self.names)}",
            details=f"declared parameters: {', '.join(sorted(declared)) or '(none)'}",
        )


class ProvisionError(PipelineError):
    """
    A base environment couldn't be instantiated or a package couldn't be
    installed into it. `package` is None when the base itself failed.
    """

    reason_code = "ProvisionError"

    def __init__(
        self,
        base: str,
        package: Optional[str],
        details: str = "",
        stage: Optional[str] = None,
    ) -> None:
        self.base = base
        self.package = package
        if package is None:
            message = f"Cannot instantiate base environment '{base}'"
        else:
            message = f"Failed to install package '{package}' into base '{base}'"
        super().__init__(message, stage=stage, details=details)


class SourceImportError(PipelineError):
    """
    The source tree couldn't be imported into the environment.

    Reported with reason code "ImportError"; the class name avoids shadowing
    the builtin.
    """

    reason_code = "ImportError"

    def __init__(
        self,
        source_tree: str,
        dest_path: str,
        details: str = "",
        stage: Optional[str] = None,
    ) -> None:
        self.source_tree = source_tree
        self.dest_path = dest_path
        super().__init__(
            f"Cannot import source tree '{source_tree}' to '{dest_path}'",
            stage=stage,
            details=details,
        )


class BuildFailure(PipelineError):
    """A build command exited non-zero. Later commands were not attempted."""

    reason_code = "BuildFailure"

    def __init__(
        self,
        failing_command: str,
        exit_status: int,
        captured_output: str,
        stage: Optional[str] = None,
    ) -> None:
        self.failing_command = failing_command
        self.exit_status = exit_status
        self.captured_output = captured_output
        super().__init__(
            f"Command failed with exit status {exit_status}: {failing_command}",
            stage=stage,
            details=captured_output,
        )


class MissingArtifactError(PipelineError):
    """An artifact reference names a path the source stage never produced."""

    reason_code = "MissingArtifactError"

    def __init__(self, source_stage: str, path: str, stage: Optional[str] = None) -> None:
        self.source_stage = source_stage
        self.path = path
        super().__init__(
            f"Artifact '{path}' not found in stage '{source_stage}'",
            stage=stage,
            details=f"source stage: {source_stage}, path: {path}",
        )


class DuplicateDestinationError(PipelineError):
    """
    Two artifact references would write the same destination path, or one
    destination lies inside another.
    """

    reason_code = "DuplicateDestinationError"

    def __init__(
        self,
        dest_path: str,
        stage: Optional[str] = None,
        conflicts_with: Optional[str] = None,
    ) -> None:
        self.dest_path = dest_path
        self.conflicts_with = conflicts_with
        if conflicts_with is None or conflicts_with == dest_path:
            message = f"More than one artifact targets destination '{dest_path}'"
        else:
            message = f"Artifact destination '{dest_path}' overlaps '{conflicts_with}'"
        super().__init__(message, stage=stage)


class PipelineCancelled(PipelineError):
    """The caller's cancellation signal fired. In-flight environments were torn down."""

    reason_code = "Cancelled"

    def __init__(self, stage: Optional[str] = None) -> None:
        super().__init__("Pipeline cancelled", stage=stage)


class ArtifactCopyError(PipelineError):
    """An artifact exists but copying it into the new environment failed."""

    reason_code = "ArtifactCopyError"


class DeliverableError(PipelineError):
    """The finished deliverable couldn't be exported to its destination."""

    reason_code = "DeliverableError"
