# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for stage transitions.

The new environment holds exactly its base plus the named artifacts.
Permissions survive the copy, repeating an extraction gives byte-identical
results, and a missing artifact leaves no environment behind.
"""

import stat
from pathlib import Path
from typing import Callable

import pytest

from stagebuild.environment.extractor import extract
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.pipeline.errors import (
    ArtifactCopyError,
    DuplicateDestinationError,
    MissingArtifactError,
    PipelineSpecError,
)
from stagebuild.pipeline.model import ArtifactReference
from stagebuild.utils.filesystem import list_files


@pytest.fixture()
def builder_env(backend) -> EnvironmentHandle:  # type: ignore[no-untyped-def]
    """A finished builder environment with binaries, objects and toolchain files."""
    env = backend.instantiate("rust-1.61")
    out = env.root / "opt" / "darkfi"
    out.mkdir(parents=True)
    (out / "drk").write_bytes(b"\x7fELF drk")
    (out / "drk").chmod(0o755)
    (out / "tau").write_bytes(b"\x7fELF tau")
    (out / "tau").chmod(0o750)
    (out / "drk.o").write_bytes(b"object")
    (out / "share").mkdir()
    (out / "share" / "config.toml").write_text("[net]\n", encoding="utf-8")
    (out / "drk-latest").symlink_to("drk")
    return env


def _refs(*pairs: tuple[str, str]) -> list[ArtifactReference]:
    return [ArtifactReference("builder", source, dest) for source, dest in pairs]


class TestExtract:
    def test_only_named_artifacts_reach_the_new_environment(
        self, backend, builder_env: EnvironmentHandle  # type: ignore[no-untyped-def]
    ) -> None:
        env = extract(
            backend,
            "bullseye-slim",
            _refs(("/opt/darkfi/drk", "/usr/bin/drk"), ("/opt/darkfi/share", "/etc/darkfi")),
            {"builder": builder_env},
        )
        assert list_files(env.root) == [
            "etc/darkfi/config.toml",
            "etc/os-release",
            "usr/bin/drk",
        ]

    def test_permissions_are_preserved(self, backend, builder_env: EnvironmentHandle) -> None:  # type: ignore[no-untyped-def]
        env = extract(
            backend,
            "bullseye-slim",
            _refs(("/opt/darkfi/drk", "/usr/bin/drk"), ("/opt/darkfi/tau", "/usr/bin/tau")),
            {"builder": builder_env},
        )
        assert stat.S_IMODE((env.root / "usr" / "bin" / "drk").stat().st_mode) == 0o755
        assert stat.S_IMODE((env.root / "usr" / "bin" / "tau").stat().st_mode) == 0o750

    def test_source_environment_is_untouched(self, backend, builder_env: EnvironmentHandle) -> None:  # type: ignore[no-untyped-def]
        before = list_files(builder_env.root)
        extract(backend, "bullseye-slim", _refs(("/opt/darkfi/drk", "/usr/bin/drk")), {"builder": builder_env})
        assert list_files(builder_env.root) == before

    def test_repeated_extraction_is_byte_identical(
        self, backend, builder_env: EnvironmentHandle  # type: ignore[no-untyped-def]
    ) -> None:
        refs = _refs(("/opt/darkfi/drk", "/usr/bin/drk"), ("/opt/darkfi/share", "/etc/darkfi"))
        first = extract(backend, "bullseye-slim", refs, {"builder": builder_env})
        second = extract(backend, "bullseye-slim", refs, {"builder": builder_env})

        files = list_files(first.root)
        assert files == list_files(second.root)
        for relative in files:
            assert (first.root / relative).read_bytes() == (second.root / relative).read_bytes()

    def test_symlink_artifact_stays_a_link(self, backend, builder_env: EnvironmentHandle) -> None:  # type: ignore[no-untyped-def]
        env = extract(
            backend,
            "scratch",
            _refs(("/opt/darkfi/drk-latest", "/opt/darkfi/drk-latest")),
            {"builder": builder_env},
        )
        assert (env.root / "opt" / "darkfi" / "drk-latest").is_symlink()

    def test_artifact_may_land_inside_a_template_directory(
        self, backend, builder_env: EnvironmentHandle  # type: ignore[no-untyped-def]
    ) -> None:
        env = extract(backend, "bullseye-slim", _refs(("/opt/darkfi/drk", "/etc/drk")), {"builder": builder_env})
        assert (env.root / "etc" / "os-release").exists()
        assert (env.root / "etc" / "drk").exists()


class TestExtractFailures:
    def test_missing_artifact_names_stage_and_path(
        self,
        backend,  # type: ignore[no-untyped-def]
        builder_env: EnvironmentHandle,
        env_leftovers: Callable[[], list[Path]],
    ) -> None:
        with pytest.raises(MissingArtifactError) as exc_info:
            extract(
                backend,
                "bullseye-slim",
                _refs(("/opt/darkfi/drk", "/usr/bin/drk"), ("/opt/darkfi/darkfid", "/usr/bin/darkfid")),
                {"builder": builder_env},
            )
        assert exc_info.value.source_stage == "builder"
        assert exc_info.value.path == "/opt/darkfi/darkfid"
        # Only the builder environment is left; the half-built target is gone.
        assert env_leftovers() == [builder_env.root.parent]

    def test_escaping_source_path_is_missing(self, backend, builder_env: EnvironmentHandle, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        (builder_env.root / "escape").symlink_to(tmp_path, target_is_directory=True)
        with pytest.raises(MissingArtifactError):
            extract(backend, "scratch", _refs(("/escape/secret", "/secret")), {"builder": builder_env})

    def test_duplicate_destination_is_rejected_before_instantiation(
        self, backend, builder_env: EnvironmentHandle  # type: ignore[no-untyped-def]
    ) -> None:
        instantiated = len(backend.instantiated)
        with pytest.raises(DuplicateDestinationError):
            extract(
                backend,
                "bullseye-slim",
                _refs(("/opt/darkfi/drk", "/usr/bin/x"), ("/opt/darkfi/tau", "/usr/bin/x")),
                {"builder": builder_env},
            )
        assert len(backend.instantiated) == instantiated

    def test_nested_destinations_are_rejected_before_instantiation(
        self, backend, builder_env: EnvironmentHandle  # type: ignore[no-untyped-def]
    ) -> None:
        instantiated = len(backend.instantiated)
        with pytest.raises(DuplicateDestinationError) as exc_info:
            extract(
                backend,
                "bullseye-slim",
                _refs(("/opt/darkfi/drk", "/opt/app/bin"), ("/opt/darkfi/share", "/opt/app")),
                {"builder": builder_env},
            )
        assert exc_info.value.conflicts_with == "/opt/app/bin"
        assert len(backend.instantiated) == instantiated

    def test_file_artifact_onto_template_directory_is_a_copy_error(
        self,
        backend,  # type: ignore[no-untyped-def]
        builder_env: EnvironmentHandle,
        env_leftovers: Callable[[], list[Path]],
    ) -> None:
        with pytest.raises(ArtifactCopyError):
            extract(backend, "bullseye-slim", _refs(("/opt/darkfi/drk", "/etc")), {"builder": builder_env})
        assert env_leftovers() == [builder_env.root.parent]

    def test_reference_to_incomplete_stage_is_rejected(self, backend) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(PipelineSpecError, match="not completed"):
            extract(backend, "bullseye-slim", _refs(("/opt/darkfi/drk", "/usr/bin/drk")), {})
