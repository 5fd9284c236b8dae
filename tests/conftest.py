# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for stagebuild tests.

Fixtures here are available to every test file automatically. The on-disk
world most tests need is small: a couple of base templates, a package index,
a source tree, and a backend rooted in tmp_path.
"""

import textwrap
from pathlib import Path
from typing import Callable, Mapping, Optional

import pytest

from stagebuild.environment.backend import LocalBackend
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.environment.process import ProcessOutcome
from stagebuild.pipeline.cancel import CancelToken


DARKFI_SPEC = """\
    config_version: "1.0.0"
    name: darkfi
    parameters:
      - {name: toolchain_version, default: "1.61"}
      - {name: run_base, default: "bullseye-slim"}
    stages:
      - id: builder
        ordinal: 1
        base: "rust-${toolchain_version}"
        packages: [make-lite, jq]
        source: {dest: /opt/darkfi, exclude: [".git", "target"]}
        commands:
          - "mkdir -p out"
          - "echo drk-binary > out/drk"
          - "chmod 755 out/drk"
          - "echo intermediate > out/drk.o"
          - 'cp "$$STAGEBUILD_ENV_ROOT/etc/toolchain" out/toolchain-used'
      - id: runtime
        ordinal: 2
        base: "${run_base}"
        artifacts:
          - {from_stage: builder, path: /opt/darkfi/out/drk, to_path: /opt/darkfi/drk}
          - {from_stage: builder, path: /opt/darkfi/out/toolchain-used, to_path: /opt/darkfi/TOOLCHAIN}
"""


class RecordingBackend(LocalBackend):
    """LocalBackend that remembers which bases it instantiated and which commands ran."""

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(*args, **kwargs)
        self.instantiated: list[str] = []
        self.commands: list[str] = []
        self.torn_down: list[str] = []

    def instantiate(self, base: str, seed: Optional[Path] = None) -> EnvironmentHandle:
        handle = super().instantiate(base, seed)
        self.instantiated.append(base)
        return handle

    def run(
        self,
        env: EnvironmentHandle,
        command: str,
        workdir: str = "/",
        variables: Optional[Mapping[str, str]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ProcessOutcome:
        self.commands.append(command)
        return super().run(env, command, workdir, variables, cancel)

    def teardown(self, env: EnvironmentHandle) -> None:
        self.torn_down.append(env.env_id)
        super().teardown(env)


def _write(path: Path, content: str, mode: Optional[int] = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mode is not None:
        path.chmod(mode)


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """
    Create a minimal valid config YAML file in a temp directory.

    This is the smallest config that passes schema validation.
    Tests that need specific config values should write their own files.
    """
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "stagebuild-test"
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """A config file that's valid YAML but fails schema validation (missing required field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "stagebuild-test"
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file


@pytest.fixture()
def images(tmp_path: Path) -> Path:
    """
    Base templates and a package index:

        images/rust-1.61/etc/toolchain       "1.61"
        images/rust-1.60/etc/toolchain       "1.60"
        images/bullseye-slim/etc/os-release
        images/packages/make-lite/usr/share/make-lite/README
        images/packages/jq/usr/bin/jq        (mode 755)
    """
    root = tmp_path / "images"
    _write(root / "rust-1.61" / "etc" / "toolchain", "1.61\n")
    _write(root / "rust-1.60" / "etc" / "toolchain", "1.60\n")
    _write(root / "bullseye-slim" / "etc" / "os-release", "ID=debian\nVERSION_CODENAME=bullseye\n")
    _write(root / "packages" / "make-lite" / "usr" / "share" / "make-lite" / "README", "make-lite\n")
    _write(root / "packages" / "jq" / "usr" / "bin" / "jq", "#!/bin/sh\necho jq\n", mode=0o755)
    return root


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    return tmp_path / "envs"


@pytest.fixture()
def backend(workspace: Path, images: Path) -> RecordingBackend:
    return RecordingBackend(
        workspace=workspace,
        bases={
            "rust-1.61": images / "rust-1.61",
            "rust-1.60": images / "rust-1.60",
            "bullseye-slim": images / "bullseye-slim",
            "scratch": None,
        },
        package_index=images / "packages",
    )


@pytest.fixture()
def source_tree(tmp_path: Path) -> Path:
    """A project checkout with VCS metadata and stale build output that imports should skip."""
    src = tmp_path / "src"
    _write(src / "Makefile", "all:\n\techo build\n")
    _write(src / "src" / "main.rs", "fn main() {}\n")
    _write(src / "bin" / "drk" / "main.rs", "fn main() {}\n")
    _write(src / ".git" / "HEAD", "ref: refs/heads/master\n")
    _write(src / "target" / "stale.o", "old object\n")
    return src


@pytest.fixture()
def write_spec(tmp_path: Path) -> Callable[..., Path]:
    """Write a dedented pipeline spec into tmp_path and return its path."""

    def _write_spec(content: str, name: str = "pipeline.yaml") -> Path:
        spec_file = tmp_path / name
        spec_file.write_text(textwrap.dedent(content), encoding="utf-8")
        return spec_file

    return _write_spec


@pytest.fixture()
def darkfi_spec(write_spec: Callable[..., Path]) -> Path:
    """Two-stage builder/runtime pipeline parameterized by toolchain and runtime base."""
    return write_spec(DARKFI_SPEC, "darkfi.yaml")


def leftover_environments(workspace: Path) -> list[Path]:
    if not workspace.exists():
        return []
    return sorted(p for p in workspace.iterdir() if p.name.startswith("env_"))


@pytest.fixture()
def env_leftovers(workspace: Path) -> Callable[[], list[Path]]:
    """Environments still on disk under the workspace."""
    return lambda: leftover_environments(workspace)
