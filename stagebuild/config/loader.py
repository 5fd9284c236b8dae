# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Config loader: reads YAML from disk and produces a validated, frozen model.

The loading sequence is linear:
  1. Read raw text from the file
  2. Parse as YAML into a plain dict
  3. Hand the dict to pydantic for schema validation
  4. Return the frozen, immutable model

If anything goes wrong at any step we fail immediately with a clear error.
The same reader is shared with the pipeline spec loader.
"""

from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from stagebuild.config.exceptions import ConfigLoadError, ConfigValidationError
from stagebuild.config.schema import StagebuildConfig

ModelT = TypeVar("ModelT", bound=BaseModel)


def read_yaml_file(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML file and return the parsed dict.

    File existence is checked up front because yaml.safe_load gives cryptic
    errors on missing files.

    Raises:
        ConfigLoadError: If the file doesn't exist, isn't readable, or isn't a
            YAML mapping.
    """
    if not config_path.exists():
        raise ConfigLoadError(f"Config file not found: {config_path}")

    if not config_path.is_file():
        raise ConfigLoadError(f"Config path is not a file: {config_path}")

    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except OSError as err:
        raise ConfigLoadError(f"Cannot read config file {config_path}: {err}") from err

    try:
        parsed = yaml.safe_load(raw_text)
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {config_path}: {err}") from err

    if not isinstance(parsed, dict):
        raise ConfigLoadError(
            f"Config file must contain a YAML mapping (dict), got {type(parsed).__name__}"
        )

    return parsed


def validate_model(model_cls: type[ModelT], raw_data: dict[str, Any], source: Path) -> ModelT:
    """Validate a parsed dict against a frozen pydantic model."""
    try:
        return model_cls.model_validate(raw_data)
    except ValidationError as err:
        raise ConfigValidationError(
            f"Config validation failed for {source}:\n{err}"
        ) from err


def load_config(config_path: Path) -> StagebuildConfig:
    """
    Load, validate, and freeze a tool config file.

    Args:
        config_path: Path to a YAML config file.

    Returns:
        A fully validated, frozen StagebuildConfig instance.

    Raises:
        ConfigLoadError: File I/O or YAML parse failures.
        ConfigValidationError: Schema violations (missing fields, wrong types, unknown keys).
    """
    raw_data = read_yaml_file(config_path)
    return validate_model(StagebuildConfig, raw_data, config_path)


def default_config() -> StagebuildConfig:
    """The config used when no --config file is given: defaults everywhere."""
    return StagebuildConfig.model_validate({"global": {"config_version": "1.0.0"}})
