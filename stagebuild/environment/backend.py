# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Environment backends.

A backend knows how to instantiate an isolated environment from a base
identifier, install a package into it, run a command inside it, export it,
and tear it down. The pipeline components only talk to the EnvironmentBackend
protocol, so a container-engine backend can slot in without touching them.

LocalBackend is the backend that ships. Each environment is a private
directory under the workspace:

    <workspace>/env_<base>_<random>/root/   <- the environment's filesystem

Bases map to template directories copied into a fresh root (or nothing, for
an empty root). Packages come from a local package index, one directory per
package overlaid onto the root, or from an install command run inside the
root. Commands run with the environment root's workdir as cwd.

LocalBackend isolates filesystem state, not processes: a build command can
still read the host. That is enough to guarantee the property that matters,
which is that nothing from a build environment reaches the deliverable unless
an artifact reference names it.
"""

import os
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

from stagebuild.config.schema import StagebuildConfig
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.environment.process import ProcessOutcome, run_process
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import ProvisionError
from stagebuild.utils.filesystem import overlay_tree
from stagebuild.utils.paths import ensure_directory

logger = get_logger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
_PACKAGE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.+:-]*$")


class EnvironmentBackend(Protocol):
    @property
    def host_directories(self) -> tuple[Path, ...]: ...

    def instantiate(self, base: str, seed: Optional[Path] = None) -> EnvironmentHandle: ...

    def install(
        self,
        env: EnvironmentHandle,
        package: str,
        cancel: Optional[CancelToken] = None,
    ) -> None: ...

    def run(
        self,
        env: EnvironmentHandle,
        command: str,
        workdir: str = "/",
        variables: Optional[Mapping[str, str]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ProcessOutcome: ...

    def export(self, env: EnvironmentHandle, destination: Path) -> Path: ...

    def teardown(self, env: EnvironmentHandle) -> None: ...


class LocalBackend:
    """Directory-backed environments under a workspace directory."""

    def __init__(
        self,
        workspace: Path,
        bases: Mapping[str, Optional[Path]],
        package_index: Optional[Path] = None,
        install_command: Optional[Sequence[str]] = None,
        shell: str = "/bin/sh",
        command_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._workspace = workspace
        self._bases = dict(bases)
        self._package_index = package_index
        self._install_command = list(install_command) if install_command else None
        self._shell = shell
        self._command_timeout_seconds = command_timeout_seconds

    @classmethod
    def from_config(cls, config: StagebuildConfig, base_dir: Path) -> "LocalBackend":
        """Build a backend from tool config, resolving relative paths against base_dir."""

        def _resolve(raw: Optional[str]) -> Optional[Path]:
            if raw is None:
                return None
            path = Path(raw)
            return path if path.is_absolute() else base_dir / path

        backend_cfg = config.backend
        return cls(
            workspace=_resolve(config.global_config.workspace) or base_dir,
            bases={name: _resolve(template) for name, template in backend_cfg.bases.items()},
            package_index=_resolve(backend_cfg.package_index),
            install_command=backend_cfg.install_command,
            shell=backend_cfg.shell,
            command_timeout_seconds=backend_cfg.command_timeout_seconds,
        )

    @property
    def workspace(self) -> Path:
        return self._workspace

    @property
    def host_directories(self) -> tuple[Path, ...]:
        """Host directories holding backend state; a source import never copies them."""
        return (self._workspace,)

    def instantiate(self, base: str, seed: Optional[Path] = None) -> EnvironmentHandle:
        """
        Create a fresh environment from a base identifier.

        When `seed` is given (a layer cache snapshot) its contents are used in
        place of the base template.

        Raises:
            ProvisionError: Unknown base, or the template couldn't be copied.
        """
        if base not in self._bases:
            known = ", ".join(sorted(self._bases)) or "(none configured)"
            raise ProvisionError(base, None, details=f"unknown base environment; known bases: {known}")

        template = seed if seed is not None else self._bases[base]
        if template is not None and not template.is_dir():
            raise ProvisionError(base, None, details=f"template directory not found: {template}")

        safe_base = _UNSAFE_ID_CHARS.sub("_", base)
        try:
            ensure_directory(self._workspace)
            env_dir = Path(tempfile.mkdtemp(prefix=f"env_{safe_base}_", dir=str(self._workspace)))
        except OSError as err:
            raise ProvisionError(base, None, details=str(err)) from err
        root = env_dir / "root"

        try:
            root.mkdir()
            if template is not None:
                overlay_tree(template, root)
        except OSError as err:
            shutil.rmtree(env_dir, ignore_errors=True)
            raise ProvisionError(base, None, details=str(err)) from err

        handle = EnvironmentHandle(env_id=env_dir.name, base=base, root=root)
        logger.debug(
            "Environment instantiated",
            extra={"env_id": handle.env_id, "base": base, "from_cache": seed is not None},
        )
        return handle

    def install(
        self,
        env: EnvironmentHandle,
        package: str,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        """
        Install one package into the environment.

        Raises:
            ProvisionError: The package doesn't exist or its installation failed.
            PipelineCancelled: The token fired during an install command.
        """
        if not _PACKAGE_NAME.match(package):
            raise ProvisionError(env.base, package, details="invalid package name")

        if self._install_command is not None:
            argv = [part.replace("{package}", package) for part in self._install_command]
            outcome = run_process(
                argv,
                cwd=env.root,
                env=self._process_env(env, {}),
                cancel=cancel,
                timeout_seconds=self._command_timeout_seconds,
            )
            if not outcome.success:
                raise ProvisionError(
                    env.base,
                    package,
                    details=f"install command exited {outcome.exit_status}\n{outcome.output}",
                )
            return

        if self._package_index is None:
            raise ProvisionError(
                env.base,
                package,
                details="no package_index or install_command configured",
            )

        package_dir = self._package_index / package
        if not package_dir.is_dir():
            raise ProvisionError(
                env.base,
                package,
                details=f"package not found in index {self._package_index}",
            )

        try:
            overlay_tree(package_dir, env.root)
        except OSError as err:
            raise ProvisionError(env.base, package, details=str(err)) from err

    def run(
        self,
        env: EnvironmentHandle,
        command: str,
        workdir: str = "/",
        variables: Optional[Mapping[str, str]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ProcessOutcome:
        """Run one shell command inside the environment. The workdir is created if missing."""
        cwd = ensure_directory(env.path(workdir))
        return run_process(
            [self._shell, "-c", command],
            cwd=cwd,
            env=self._process_env(env, variables or {}),
            cancel=cancel,
            timeout_seconds=self._command_timeout_seconds,
        )

    def export(self, env: EnvironmentHandle, destination: Path) -> Path:
        """
        Copy the environment's filesystem to `destination`, atomically.

        The copy is staged beside the destination and renamed into place, so
        the destination either holds the complete deliverable or doesn't exist.

        Raises:
            FileExistsError: The destination already exists.
            OSError: The copy or rename failed.
        """
        if destination.exists():
            raise FileExistsError(f"Destination already exists: {destination}")

        destination.parent.mkdir(parents=True, exist_ok=True)
        staging = destination.parent / f".{destination.name}.{uuid.uuid4().hex}.partial"
        try:
            shutil.copytree(env.root, staging, symlinks=True, copy_function=shutil.copy2)
            staging.rename(destination)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return destination

    def teardown(self, env: EnvironmentHandle) -> None:
        """Remove an environment and everything inside it."""
        env_dir = env.root.parent
        if env_dir.is_dir():
            shutil.rmtree(env_dir, ignore_errors=True)
            logger.debug("Environment torn down", extra={"env_id": env.env_id})

    def _process_env(self, env: EnvironmentHandle, variables: Mapping[str, str]) -> dict[str, str]:
        process_env = dict(os.environ)
        process_env.update(variables)
        process_env["STAGEBUILD_ENV_ROOT"] = str(env.root)
        process_env["STAGEBUILD_BASE"] = env.base
        return process_env
