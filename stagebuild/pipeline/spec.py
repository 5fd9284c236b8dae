# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Schema and loader for the declarative pipeline spec.

A pipeline spec is a YAML file listing build parameters and stages:

    config_version: "1.0.0"
    name: darkfi
    parameters:
      - {name: toolchain_version, default: "1.61"}
      - {name: run_base, default: "bullseye-slim"}
    stages:
      - id: builder
        ordinal: 1
        base: "rust-${toolchain_version}"
        packages: [git, make]
        source: {dest: /opt/build, exclude: [".git", "target"]}
        workdir: /opt/build
        commands: ["make clean", "make test", "make"]
      - id: runtime
        ordinal: 2
        base: "${run_base}"
        artifacts:
          - {from_stage: builder, path: /opt/build/drk, to_path: /usr/local/bin/drk}

Only shape is checked here. Cross-stage rules (ordinals, reference
direction, destination conflicts) need resolved parameters and are enforced
when the Pipeline is built in stagebuild.pipeline.model.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stagebuild.config.loader import read_yaml_file, validate_model

_IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_.-]*$"
_PARAMETER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"


class ParameterSpec(BaseModel):
    """A declared build parameter. Defaults are strings; quote numbers in YAML."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    name: str = Field(pattern=_PARAMETER_PATTERN, description="Parameter name used in ${...}")
    default: str = Field(description="Value used when the caller gives no override")
    description: Optional[str] = Field(default=None)


class SourceSpec(BaseModel):
    """Where the invocation's source tree lands inside the stage environment."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    dest: str = Field(description="Absolute in-environment directory to import into")
    exclude: list[str] = Field(
        default_factory=list,
        description="Glob patterns skipped during import, like an ignore file",
    )


class ArtifactSpec(BaseModel):
    """One path copied forward from an earlier stage."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    from_stage: str = Field(description="Identifier of the stage that produced the artifact")
    path: str = Field(description="Path inside the source stage's environment")
    to_path: str = Field(description="Path inside this stage's environment")


class StageSpec(BaseModel):
    """One isolated environment plus the ordered commands run in it."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    id: str = Field(pattern=_IDENTIFIER_PATTERN, description="Unique stage identifier")
    ordinal: int = Field(ge=0, description="Position in the pipeline; strictly increasing")
    base: str = Field(min_length=1, description="Base environment identifier")
    packages: list[str] = Field(
        default_factory=list,
        description="System-level packages installed after instantiation, in order",
    )
    source: Optional[SourceSpec] = Field(
        default=None,
        description="Import the source tree into this stage",
    )
    workdir: Optional[str] = Field(
        default=None,
        description="Working directory for commands; defaults to source.dest, then /",
    )
    commands: list[str] = Field(
        default_factory=list,
        description="Shell-level instructions run sequentially; first failure halts",
    )
    artifacts: list[ArtifactSpec] = Field(
        default_factory=list,
        description="Paths copied from earlier stages into a fresh environment",
    )


class PipelineSpec(BaseModel):
    """Top-level pipeline spec container."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    name: str = Field(default="pipeline", description="Pipeline name, recorded in manifests")
    parameters: list[ParameterSpec] = Field(default_factory=list)
    stages: list[StageSpec] = Field(min_length=1)


def load_pipeline_spec(spec_path: Path) -> PipelineSpec:
    """
    Load, validate, and freeze a pipeline spec file.

    Raises:
        ConfigLoadError: File I/O or YAML parse failures.
        ConfigValidationError: Schema violations.
    """
    raw_data = read_yaml_file(spec_path)
    return validate_model(PipelineSpec, raw_data, spec_path)
