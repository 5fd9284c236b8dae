# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the stagebuild CLI.

Each function here corresponds to one CLI subcommand and returns an exit
code. No print() calls; everything goes through the structured logger,
including the plan output.
"""

import argparse
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from stagebuild.cli.exit_codes import (
    CONFIG_ERROR,
    RUNTIME_ERROR,
    SUCCESS,
    USER_ERROR,
    VALIDATION_ERROR,
    exit_code_for_reason,
)
from stagebuild.config.exceptions import ConfigError
from stagebuild.config.loader import default_config, load_config
from stagebuild.config.schema import StagebuildConfig
from stagebuild.logging.logger import get_logger
from stagebuild.pipeline.cancel import CancelToken
from stagebuild.pipeline.errors import PipelineError
from stagebuild.runtime.bootstrap import bootstrap


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, Optional[StagebuildConfig], logging.Logger]:
    """
    The shared setup every command needs: load config, run bootstrap.

    Returns a tuple of (exit_code, config, logger). If exit_code is not SUCCESS,
    the caller should return it immediately.
    """
    logger = get_logger(f"stagebuild.cli.{command_name}", log_level=args.log_level or "INFO")

    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger
    else:
        config = default_config()
        logger.debug(
            "No config provided, running with defaults",
            extra={"command": command_name},
        )

    shell = config.backend.shell if command_name == "build" else None
    try:
        bootstrap(config.global_config, Path.cwd(), log_level=args.log_level, shell=shell)
    except RuntimeError as err:
        logger.error("Host check failed", extra={"command": command_name, "error": str(err)})
        return RUNTIME_ERROR, None, logger
    logger = get_logger(
        f"stagebuild.cli.{command_name}",
        log_level=args.log_level or config.global_config.log_level,
    )
    return SUCCESS, config, logger


def _parse_params(args: argparse.Namespace, logger: logging.Logger) -> Optional[dict[str, str]]:
    from stagebuild.pipeline.parameters import parse_overrides

    try:
        return parse_overrides(args.params)
    except PipelineError as err:
        logger.error("Invalid parameter override", extra={"error": err.message})
        return None


@contextmanager
def _cancel_on_signals(cancel: CancelToken, logger: logging.Logger) -> Iterator[None]:
    """SIGINT / SIGTERM set the cancel token for the duration of the block."""

    def _handler(signum: int, _frame: object) -> None:
        logger.warning("Cancellation requested", extra={"signal": signum})
        cancel.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, old_handler in previous.items():
            signal.signal(sig, old_handler)


def handle_build(args: argparse.Namespace) -> int:
    """Run a pipeline spec and export its deliverable."""
    exit_code, config, logger = _load_and_bootstrap(args, "build")
    if exit_code != SUCCESS or config is None:
        return exit_code

    overrides = _parse_params(args, logger)
    if overrides is None:
        return USER_ERROR

    from stagebuild.environment.backend import LocalBackend
    from stagebuild.environment.cache import LayerCache
    from stagebuild.pipeline.model import describe_pipeline
    from stagebuild.pipeline.runner import (
        BuildRequest,
        Failure,
        execute_build_request,
        prepare_pipeline,
    )

    spec_path = Path(args.spec)

    try:
        if args.dry_run:
            pipeline = prepare_pipeline(spec_path, overrides)
            logger.info(
                "Dry run, pipeline not executed",
                extra={"plan": describe_pipeline(pipeline), "output": args.output},
            )
            return SUCCESS

        base_dir = Path.cwd()
        backend = LocalBackend.from_config(config, base_dir)
        cache = None
        if config.backend.cache_dir is not None:
            cache_dir = Path(config.backend.cache_dir)
            cache = LayerCache(cache_dir if cache_dir.is_absolute() else base_dir / cache_dir)

        request = BuildRequest(
            spec_path=spec_path,
            overrides=overrides,
            source_tree=Path(args.source),
            destination=Path(args.output),
            manifest_path=Path(args.manifest) if args.manifest else None,
        )

        logger.info(
            "Starting build",
            extra={"spec": str(spec_path), "source": args.source, "output": args.output},
        )

        cancel = CancelToken()
        with _cancel_on_signals(cancel, logger):
            outcome = execute_build_request(request, backend, cancel=cancel, cache=cache)

    except ConfigError as err:
        logger.error("Pipeline spec error", extra={"error": str(err)})
        return CONFIG_ERROR
    except PipelineError as err:
        logger.error(
            "Pipeline rejected",
            extra={"reason_code": err.reason_code, "stage": err.stage, "error": err.message},
        )
        return exit_code_for_reason(err.reason_code)
    except Exception as err:
        logger.error("Build failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR

    if isinstance(outcome, Failure):
        logger.error(
            "Build failed",
            extra={
                "stage": outcome.stage_identifier,
                "reason_code": outcome.reason_code,
                "error": outcome.message,
                "details": outcome.details,
            },
        )
        return exit_code_for_reason(outcome.reason_code)

    logger.info(
        "Build complete",
        extra={
            "deliverable": str(outcome.produced_environment),
            "manifest": str(outcome.manifest_path),
            "file_count": len(outcome.manifest.files),
        },
    )
    return SUCCESS


def handle_plan(args: argparse.Namespace) -> int:
    """Resolve parameters, validate the pipeline, and log its stage plan."""
    exit_code, config, logger = _load_and_bootstrap(args, "plan")
    if exit_code != SUCCESS:
        return exit_code

    overrides = _parse_params(args, logger)
    if overrides is None:
        return USER_ERROR

    from stagebuild.pipeline.model import describe_pipeline
    from stagebuild.pipeline.runner import prepare_pipeline

    try:
        pipeline = prepare_pipeline(Path(args.spec), overrides)
    except ConfigError as err:
        logger.error("Pipeline spec error", extra={"error": str(err)})
        return CONFIG_ERROR
    except PipelineError as err:
        logger.error(
            "Pipeline rejected",
            extra={"reason_code": err.reason_code, "stage": err.stage, "error": err.message},
        )
        return exit_code_for_reason(err.reason_code)

    logger.info("Pipeline plan", extra={"plan": describe_pipeline(pipeline)})
    return SUCCESS


def handle_verify(args: argparse.Namespace) -> int:
    """Check a deliverable against its checksum manifest."""
    exit_code, config, logger = _load_and_bootstrap(args, "verify")
    if exit_code != SUCCESS:
        return exit_code

    from stagebuild.deliverable.manifest import (
        default_manifest_path,
        load_manifest,
        verify_deliverable,
    )

    deliverable = Path(args.deliverable)
    manifest_path = Path(args.manifest) if args.manifest else default_manifest_path(deliverable)

    try:
        manifest = load_manifest(manifest_path)
    except (FileNotFoundError, ValueError) as err:
        logger.error("Cannot load manifest", extra={"path": str(manifest_path), "error": str(err)})
        return VALIDATION_ERROR

    result = verify_deliverable(deliverable, manifest)
    if not result.is_valid:
        logger.error(
            "Verification failed",
            extra={
                "deliverable": str(deliverable),
                "mismatches": result.mismatches,
                "missing": result.missing_files,
                "unexpected": result.unexpected_files,
            },
        )
        return VALIDATION_ERROR

    logger.info(
        "Verification passed",
        extra={"deliverable": str(deliverable), "checked_count": result.checked_count},
    )
    return SUCCESS


def handle_info(args: argparse.Namespace) -> int:
    """Display version and environment information."""
    logger = get_logger("stagebuild.cli.info", log_level=args.log_level or "INFO")

    from stagebuild import __version__
    from stagebuild.runtime.environment import describe_host

    host = describe_host(default_config().backend.shell)

    logger.info(
        "System information",
        extra={
            "stagebuild_version": __version__,
            "python_version": host.python_version,
            "platform": host.platform,
            "architecture": host.architecture,
            "hostname": host.hostname,
            "shell": host.shell,
            "config": args.config,
        },
    )
    return SUCCESS
