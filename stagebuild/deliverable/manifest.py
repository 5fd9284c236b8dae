# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Deliverable manifests and verification.

A manifest traces a deliverable back to how it was made: pipeline name,
resolved parameters, the stages that ran, and a SHA256 for every file it
contains (symlinks are recorded by their target instead). It is written
next to the deliverable, never inside it, so the deliverable holds exactly
the extracted artifacts and nothing else.

Manifest JSON is written with sorted keys, so two runs over the same inputs
differ only in `created`.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Sequence

from stagebuild import __version__
from stagebuild.logging.logger import get_logger
from stagebuild.utils.filesystem import atomic_write, list_files
from stagebuild.utils.hashing import compute_sha256

_logger: logging.Logger = get_logger(__name__)

MANIFEST_SUFFIX = ".manifest.json"
_SYMLINK_PREFIX = "symlink:"

_REQUIRED_MANIFEST_FIELDS: frozenset[str] = frozenset(
    {"pipeline", "parameters", "stages", "files", "created", "stagebuild_version"}
)


@dataclass(frozen=True)
class DeliverableManifest:
    pipeline: str
    parameters: dict[str, str]
    stages: list[str]
    files: dict[str, str]
    created: str
    stagebuild_version: str


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking a deliverable against its manifest."""

    is_valid: bool
    checked_count: int
    mismatches: list[str] = field(default_factory=list)
    missing_files: list[str] = field(default_factory=list)
    unexpected_files: list[str] = field(default_factory=list)


def default_manifest_path(deliverable_dir: Path) -> Path:
    """`out/runtime` -> `out/runtime.manifest.json`."""
    return deliverable_dir.with_name(deliverable_dir.name + MANIFEST_SUFFIX)


def _fingerprint(path: Path) -> str:
    if path.is_symlink():
        return _SYMLINK_PREFIX + os.readlink(path)
    return compute_sha256(path)


def checksum_tree(root: Path) -> dict[str, str]:
    """Relative path -> SHA256 (or symlink target) for every file under root, sorted."""
    return {relative: _fingerprint(root / relative) for relative in list_files(root)}


def create_manifest(
    pipeline_name: str,
    parameters: Mapping[str, str],
    stages: Sequence[str],
    deliverable_dir: Path,
) -> DeliverableManifest:
    """Checksum a finished deliverable and wrap it with its provenance."""
    files = checksum_tree(deliverable_dir)
    manifest = DeliverableManifest(
        pipeline=pipeline_name,
        parameters=dict(parameters),
        stages=list(stages),
        files=files,
        created=datetime.now(tz=timezone.utc).isoformat(),
        stagebuild_version=__version__,
    )
    _logger.info(
        "Manifest created",
        extra={"pipeline": pipeline_name, "file_count": len(files)},
    )
    return manifest


def write_manifest(manifest: DeliverableManifest, path: Path) -> None:
    """Serialize a manifest to JSON and write it atomically."""
    content = json.dumps(asdict(manifest), indent=2, sort_keys=True) + "\n"
    atomic_write(path, content)
    _logger.info("Manifest written", extra={"path": str(path)})


def load_manifest(path: Path) -> DeliverableManifest:
    """
    Load a manifest from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the JSON is invalid or required fields are missing.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as err:
        raise ValueError(f"Manifest is not valid JSON: {err}") from err

    if not isinstance(data, dict):
        raise ValueError("Manifest root is not a JSON object")

    missing = _REQUIRED_MANIFEST_FIELDS - set(data.keys())
    if missing:
        raise ValueError(f"Manifest is missing required fields: {', '.join(sorted(missing))}")

    return DeliverableManifest(
        pipeline=str(data["pipeline"]),
        parameters={str(k): str(v) for k, v in data["parameters"].items()},
        stages=[str(s) for s in data["stages"]],
        files={str(k): str(v) for k, v in data["files"].items()},
        created=str(data["created"]),
        stagebuild_version=str(data["stagebuild_version"]),
    )


def verify_deliverable(deliverable_dir: Path, manifest: DeliverableManifest) -> VerificationResult:
    """
    Check a deliverable against its manifest.

    Reports every mismatch, missing file and unexpected extra file, not just
    the first.
    """
    if not deliverable_dir.is_dir():
        return VerificationResult(
            is_valid=False,
            checked_count=0,
            missing_files=sorted(manifest.files),
        )

    present = set(list_files(deliverable_dir))
    mismatches: list[str] = []
    missing_files: list[str] = []
    checked = 0

    for relative, expected in sorted(manifest.files.items()):
        if relative not in present:
            missing_files.append(relative)
            _logger.error("File missing from deliverable", extra={"file": relative})
            continue
        checked += 1
        if _fingerprint(deliverable_dir / relative) != expected:
            mismatches.append(relative)
            _logger.error("Checksum mismatch", extra={"file": relative})

    unexpected_files = sorted(present - set(manifest.files))
    for relative in unexpected_files:
        _logger.error("Unexpected file in deliverable", extra={"file": relative})

    is_valid = not mismatches and not missing_files and not unexpected_files
    if is_valid:
        _logger.info("Deliverable verified", extra={"checked_count": checked})

    return VerificationResult(
        is_valid=is_valid,
        checked_count=checked,
        mismatches=mismatches,
        missing_files=missing_files,
        unexpected_files=unexpected_files,
    )
