# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Environment provisioning: instantiate from a base, then install packages.

Provisioning is all-or-nothing. If any package fails, the partially
provisioned environment is torn down before the error propagates, so a
caller never holds a half-provisioned handle.
"""

from typing import Optional, Sequence

from stagebuild.environment.backend import EnvironmentBackend
from stagebuild.environment.cache import LayerCache
from stagebuild.environment.handle import EnvironmentHandle
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken

logger = get_logger(__name__)


def install_packages(
    backend: EnvironmentBackend,
    env: EnvironmentHandle,
    packages: Sequence[str],
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Install packages into an existing environment, in order.

    Stops at the first failure. The environment is left as is; tearing it
    down is the caller's call since the caller owns it.

    Raises:
        ProvisionError: Carries the base and the first failing package.
        PipelineCancelled: The token fired.
    """
    for package in packages:
        if cancel is not None:
            cancel.raise_if_cancelled()
        backend.install(env, package, cancel)
        logger.info("Package installed", extra={"env_id": env.env_id, "package": package})


def provision(
    backend: EnvironmentBackend,
    base: str,
    packages: Sequence[str],
    cancel: Optional[CancelToken] = None,
    cache: Optional[LayerCache] = None,
) -> EnvironmentHandle:
    """
    Produce a fully provisioned environment from a base and a package list.

    With a layer cache, a previously provisioned (base, packages) pair is
    restored from its snapshot and no package is reinstalled.

    Raises:
        ProvisionError: The base couldn't be instantiated or a package failed.
            No environment survives the failure.
        PipelineCancelled: The token fired. No environment survives.
    """
    if cancel is not None:
        cancel.raise_if_cancelled()

    snapshot = cache.lookup(base, packages) if cache is not None else None
    if snapshot is not None:
        env = backend.instantiate(base, seed=snapshot)
        logger.info(
            "Environment provisioned from cache",
            extra={"env_id": env.env_id, "base": base, "packages": list(packages)},
        )
        return env

    env = backend.instantiate(base)
    try:
        install_packages(backend, env, packages, cancel)
    except BaseException:
        backend.teardown(env)
        raise

    if cache is not None:
        try:
            cache.store(base, packages, env.root)
        except OSError as err:
            logger.warning(
                "Could not write layer cache, continuing without it",
                extra={"base": base, "error": str(err)},
            )

    logger.info(
        "Environment provisioned",
        extra={"env_id": env.env_id, "base": base, "packages": list(packages)},
    )
    return env
