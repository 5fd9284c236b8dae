# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI smoke tests.

CLI tests verify:
  - commands execute
  - exit codes are correct
  - help text exists

We use subprocess to test the actual CLI entrypoint the way a user would.
This catches issues that unit tests miss, like broken imports or entrypoint
registration.
"""

import json
import os
import subprocess
import sys
import textwrap
from pathlib import Path
from typing import Optional

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]


def _run_cli(*args: str, cwd: Optional[Path] = None) -> subprocess.CompletedProcess[str]:
    """Run `stagebuild` with the given arguments and capture output."""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, "-m", "stagebuild.cli.main", *args],
        capture_output=True,
        text=True,
        timeout=60,
        cwd=str(cwd) if cwd is not None else None,
        env=env,
    )


def _log_lines(stdout: str) -> list[dict]:  # type: ignore[type-arg]
    return [json.loads(line) for line in stdout.splitlines() if line.startswith("{")]


@pytest.fixture()
def project(tmp_path: Path, images: Path, source_tree: Path, darkfi_spec: Path) -> Path:
    """A working directory with tool config, pipeline spec, images and sources."""
    (tmp_path / "stagebuild.yaml").write_text(
        textwrap.dedent("""\
            global:
              config_version: "1.0.0"
              project_name: "darkfi"
              workspace: "work/envs"
            backend:
              bases:
                rust-1.61: "images/rust-1.61"
                rust-1.60: "images/rust-1.60"
                bullseye-slim: "images/bullseye-slim"
              package_index: "images/packages"
        """),
        encoding="utf-8",
    )
    return tmp_path


class TestHelpTexts:
    """Every subcommand must have working --help output."""

    @pytest.mark.parametrize("subcommand", ["build", "plan", "verify", "info"])
    def test_subcommand_help_exits_zero(self, subcommand: str) -> None:
        result = _run_cli(subcommand, "--help")
        assert result.returncode == 0
        assert "usage" in result.stdout.lower()

    def test_root_help_exits_with_user_error(self) -> None:
        """Running stagebuild with no args should show help and exit with USER_ERROR (1)."""
        result = _run_cli()
        assert result.returncode == 1


class TestInfo:
    def test_info_runs_without_config(self) -> None:
        result = _run_cli("info")
        assert result.returncode == 0
        assert any("stagebuild_version" in line for line in _log_lines(result.stdout))


class TestPlan:
    def test_plan_shows_resolved_stages(self, project: Path) -> None:
        result = _run_cli("plan", "darkfi.yaml", "--param", "toolchain_version=1.60", cwd=project)
        assert result.returncode == 0
        plans = [line["plan"] for line in _log_lines(result.stdout) if "plan" in line]
        assert plans[0]["stages"][0]["base"] == "rust-1.60"
        assert plans[0]["deliverable_stage"] == "runtime"

    def test_unknown_parameter_is_a_user_error(self, project: Path) -> None:
        result = _run_cli("plan", "darkfi.yaml", "--param", "toolchian_version=1.60", cwd=project)
        assert result.returncode == 1

    def test_malformed_parameter_is_a_user_error(self, project: Path) -> None:
        result = _run_cli("plan", "darkfi.yaml", "--param", "toolchain_version", cwd=project)
        assert result.returncode == 1

    def test_missing_spec_is_a_config_error(self, tmp_path: Path) -> None:
        result = _run_cli("plan", "nope.yaml", cwd=tmp_path)
        assert result.returncode == 2

    def test_invalid_pipeline_is_a_config_error(self, tmp_path: Path) -> None:
        (tmp_path / "bad.yaml").write_text(
            textwrap.dedent("""\
                config_version: "1.0.0"
                stages:
                  - {id: a, ordinal: 2, base: scratch}
                  - {id: b, ordinal: 1, base: scratch}
            """),
            encoding="utf-8",
        )
        result = _run_cli("plan", "bad.yaml", cwd=tmp_path)
        assert result.returncode == 2


class TestConfigLoading:
    def test_nonexistent_config_returns_config_error(self, project: Path) -> None:
        result = _run_cli("plan", "darkfi.yaml", "--config", "/nonexistent/path.yaml", cwd=project)
        assert result.returncode == 2  # CONFIG_ERROR

    def test_valid_config_is_accepted(self, project: Path, tmp_config_file: Path) -> None:
        result = _run_cli("plan", "darkfi.yaml", "--config", str(tmp_config_file), cwd=project)
        assert result.returncode == 0


class TestBuildAndVerify:
    def test_build_then_verify(self, project: Path) -> None:
        build = _run_cli(
            "build", "darkfi.yaml",
            "--config", "stagebuild.yaml",
            "--source", "src",
            "--output", "out/runtime",
            cwd=project,
        )
        assert build.returncode == 0, build.stdout + build.stderr
        assert (project / "out" / "runtime" / "opt" / "darkfi" / "drk").exists()
        assert (project / "out" / "runtime.manifest.json").exists()
        assert list((project / "work" / "envs").iterdir()) == []

        verify = _run_cli("verify", "out/runtime", cwd=project)
        assert verify.returncode == 0

        (project / "out" / "runtime" / "opt" / "darkfi" / "drk").write_text("tampered", encoding="utf-8")
        verify = _run_cli("verify", "out/runtime", cwd=project)
        assert verify.returncode == 4  # VALIDATION_ERROR

    def test_default_workspace_with_current_directory_as_source(self, project: Path) -> None:
        (project / "defaults.yaml").write_text(
            textwrap.dedent("""\
                global:
                  config_version: "1.0.0"
                backend:
                  bases:
                    rust-1.61: "images/rust-1.61"
                    bullseye-slim: "images/bullseye-slim"
                  package_index: "images/packages"
                  cache_dir: ".stagebuild/cache"
            """),
            encoding="utf-8",
        )
        result = _run_cli(
            "build", "darkfi.yaml",
            "--config", "defaults.yaml",
            "--output", "out/runtime",
            cwd=project,
        )
        assert result.returncode == 0, result.stdout + result.stderr
        assert (project / "out" / "runtime" / "opt" / "darkfi" / "drk").exists()
        assert list((project / ".stagebuild" / "envs").iterdir()) == []

    def test_dry_run_creates_nothing(self, project: Path) -> None:
        result = _run_cli(
            "build", "darkfi.yaml",
            "--config", "stagebuild.yaml",
            "--output", "out/runtime",
            "--dry-run",
            cwd=project,
        )
        assert result.returncode == 0
        assert not (project / "out").exists()
        assert not (project / "work").exists()

    def test_failing_build_is_a_runtime_error(self, project: Path) -> None:
        (project / "failing.yaml").write_text(
            textwrap.dedent("""\
                config_version: "1.0.0"
                stages:
                  - {id: builder, ordinal: 1, base: rust-1.61, commands: ["exit 1"]}
                  - id: runtime
                    ordinal: 2
                    base: bullseye-slim
                    artifacts: [{from_stage: builder, path: /drk, to_path: /drk}]
            """),
            encoding="utf-8",
        )
        result = _run_cli(
            "build", "failing.yaml",
            "--config", "stagebuild.yaml",
            "--output", "out/runtime",
            cwd=project,
        )
        assert result.returncode == 3  # RUNTIME_ERROR
        assert not (project / "out" / "runtime").exists()
        failures = [line for line in _log_lines(result.stdout) if line.get("msg") == "Build failed"]
        assert failures[0]["stage"] == "builder"
        assert failures[0]["reason_code"] == "BuildFailure"

    def test_missing_artifact_is_a_validation_error(self, project: Path) -> None:
        (project / "missing.yaml").write_text(
            textwrap.dedent("""\
                config_version: "1.0.0"
                stages:
                  - {id: builder, ordinal: 1, base: rust-1.61}
                  - id: runtime
                    ordinal: 2
                    base: bullseye-slim
                    artifacts: [{from_stage: builder, path: /opt/darkfi/drk, to_path: /drk}]
            """),
            encoding="utf-8",
        )
        result = _run_cli(
            "build", "missing.yaml",
            "--config", "stagebuild.yaml",
            "--output", "out/runtime",
            cwd=project,
        )
        assert result.returncode == 4

    def test_missing_build_shell_is_a_runtime_error(self, project: Path) -> None:
        (project / "noshell.yaml").write_text(
            textwrap.dedent("""\
                global:
                  config_version: "1.0.0"
                backend:
                  shell: "/nonexistent/bash"
            """),
            encoding="utf-8",
        )
        result = _run_cli(
            "build", "darkfi.yaml",
            "--config", "noshell.yaml",
            "--output", "out/runtime",
            cwd=project,
        )
        assert result.returncode == 3  # RUNTIME_ERROR
        assert not (project / ".stagebuild").exists()

    def test_verify_without_manifest_is_a_validation_error(self, tmp_path: Path) -> None:
        (tmp_path / "runtime").mkdir()
        result = _run_cli("verify", "runtime", cwd=tmp_path)
        assert result.returncode == 4
