# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe schemas for the stagebuild tool configuration.

This is the config of the tool itself (where environments live, where base
templates and packages come from, how verbose to be). The declarative
pipeline spec a build runs has its own schema in stagebuild.pipeline.spec.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to every command.

    Relative paths are resolved against the directory the command runs in.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="stagebuild", description="Human-readable project identifier"
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )
    workspace: str = Field(
        default=".stagebuild/envs",
        description="Directory where stage environments are instantiated",
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_VALID_LOG_LEVELS)}")
        return upper


class BackendConfig(BaseModel):
    """
    How the local environment backend instantiates and provisions environments.

    A base environment identifier maps to a template directory whose contents
    seed the environment root. A base mapped to null starts from an empty root.

    Packages are installed one of two ways:
      - install_command set: the argv template is run inside the environment
        root with `{package}` replaced by the package name.
      - otherwise: the package's directory under package_index is overlaid
        onto the environment root. A package without a directory there does
        not exist.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    bases: dict[str, Optional[str]] = Field(
        default_factory=dict,
        description="Base environment identifier -> template directory (null for empty)",
    )
    package_index: Optional[str] = Field(
        default=None,
        description="Directory holding one sub-tree per installable package",
    )
    install_command: Optional[list[str]] = Field(
        default=None,
        description="argv template used to install a package, with {package} placeholder",
    )
    cache_dir: Optional[str] = Field(
        default=None,
        description="Layer cache for provisioned (base, packages) roots; disabled when unset",
    )
    shell: str = Field(
        default="/bin/sh",
        description="Shell used to run build commands (invoked as <shell> -c <command>)",
    )
    command_timeout_seconds: Optional[int] = Field(
        default=None,
        ge=1,
        description="Optional per-command timeout; unset means commands run to completion",
    )

    @field_validator("install_command")
    @classmethod
    def _check_install_command(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is not None:
            if not value:
                raise ValueError("install_command must not be empty")
            if not any("{package}" in part for part in value):
                raise ValueError("install_command must contain a {package} placeholder")
        return value


class StagebuildConfig(BaseModel):
    """
    Top-level tool config container.

    A file needs at least `global:`; `backend:` falls back to an empty
    backend (no bases, no packages) when omitted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    backend: BackendConfig = Field(default_factory=BackendConfig)
