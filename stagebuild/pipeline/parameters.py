# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Build parameter resolution.

Parameters are the only externally tunable inputs of a pipeline. Each one
declares a default; the caller may override any of them. Resolution happens
exactly once, before any stage is constructed, and the result is a read-only
mapping that every later step shares.

Unknown overrides are rejected rather than ignored: a typo in
`--param toolchian_version=1.60` should stop the build, not silently build
with the default.
"""

import re
import string
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from stagebuild.pipeline.errors import ParameterFormatError, PipelineSpecError, UnknownParameterError

_ENV_NAME_PATTERN = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class BuildParameter:
    """A named build input with a declared default and an optional override."""

    name: str
    default: str
    override: Optional[str] = None

    @property
    def effective(self) -> str:
        return self.override if self.override is not None else self.default


def resolve(
    declared: Sequence[BuildParameter],
    overrides: Mapping[str, str],
) -> Mapping[str, str]:
    """
    Resolve every declared parameter to its effective value.

    The override wins when the overrides map contains the name; otherwise the
    declared default (or the parameter's own override field) is used.

    Raises:
        UnknownParameterError: If an override names an undeclared parameter.
    """
    declared_names = [param.name for param in declared]
    unknown = set(overrides) - set(declared_names)
    if unknown:
        raise UnknownParameterError(sorted(unknown), declared_names)

    resolved: dict[str, str] = {}
    for param in declared:
        if param.name in overrides:
            resolved[param.name] = overrides[param.name]
        else:
            resolved[param.name] = param.effective
    return MappingProxyType(resolved)


def parse_overrides(pairs: Sequence[str]) -> dict[str, str]:
    """
    Turn ["name=value", ...] into a dict. The value may itself contain "=".
    A name given twice keeps the last value.

    Raises:
        ParameterFormatError: If a pair has no "=" or an empty name.
    """
    overrides: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ParameterFormatError(
                f"Invalid parameter override '{pair}', expected name=value"
            )
        overrides[name] = value
    return overrides


def interpolate(template: str, resolved: Mapping[str, str]) -> str:
    """
    Substitute ${name} / $name placeholders with resolved parameter values.

    "$$" produces a literal "$", which is how a build command writes a shell
    variable reference that should survive to the shell.

    Raises:
        PipelineSpecError: If a placeholder names an undeclared parameter or
            is malformed.
    """
    try:
        return string.Template(template).substitute(resolved)
    except KeyError as err:
        raise PipelineSpecError(
            f"Placeholder ${{{err.args[0]}}} in '{template}' names an undeclared parameter"
        ) from err
    except ValueError as err:
        raise PipelineSpecError(f"Malformed placeholder in '{template}': {err}") from err


def environment_variables(resolved: Mapping[str, str]) -> dict[str, str]:
    """
    Export resolved parameters as environment variables for build commands.

    toolchain_version -> TOOLCHAIN_VERSION; characters that can't appear in a
    variable name become underscores.
    """
    return {
        _ENV_NAME_PATTERN.sub("_", name).upper(): value for name, value in resolved.items()
    }
