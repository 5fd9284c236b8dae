# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for stagebuild.

Every operation is a subcommand of `stagebuild`. No interactive prompts.
The global options (--config, --log-level, --dry-run) are inherited by every
subcommand through argparse's parent parser mechanism.

Usage:
    stagebuild build pipeline.yaml --source . --output out/runtime --param toolchain_version=1.60
    stagebuild plan pipeline.yaml
    stagebuild verify out/runtime
    stagebuild info
"""

import argparse
import sys

from stagebuild.cli.commands import handle_build, handle_info, handle_plan, handle_verify
from stagebuild.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    A separate parent parser (add_help=False) keeps help text from colliding
    between the root parser and the subcommand parsers.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the stagebuild YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level (overrides the config).",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Resolve and validate without creating any environment.",
    )
    return parent


def _add_param_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        dest="params",
        metavar="NAME=VALUE",
        help="Override a build parameter. Repeatable.",
    )


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    build_parser = subparsers.add_parser(
        "build", parents=[parent], help="Run a pipeline and produce its deliverable."
    )
    build_parser.add_argument("spec", help="Path to the pipeline spec YAML.")
    build_parser.add_argument(
        "--source",
        type=str,
        default=".",
        help="Source tree imported into stages that ask for it (default: current directory).",
    )
    build_parser.add_argument(
        "--output",
        type=str,
        required=True,
        help="Destination directory for the deliverable. Must not exist.",
    )
    build_parser.add_argument(
        "--manifest",
        type=str,
        default=None,
        help="Where to write the deliverable manifest (default: <output>.manifest.json).",
    )
    _add_param_option(build_parser)
    build_parser.set_defaults(func=handle_build)

    plan_parser = subparsers.add_parser(
        "plan", parents=[parent], help="Resolve parameters and show the stage plan."
    )
    plan_parser.add_argument("spec", help="Path to the pipeline spec YAML.")
    _add_param_option(plan_parser)
    plan_parser.set_defaults(func=handle_plan)

    verify_parser = subparsers.add_parser(
        "verify", parents=[parent], help="Check a deliverable against its manifest."
    )
    verify_parser.add_argument("deliverable", help="Deliverable directory to verify.")
    verify_parser.add_argument(
        "--manifest",
        type=str,
        default=None,
        help="Manifest to verify against (default: <deliverable>.manifest.json).",
    )
    verify_parser.set_defaults(func=handle_verify)

    info_parser = subparsers.add_parser(
        "info", parents=[parent], help="Display version and environment info."
    )
    info_parser.set_defaults(func=handle_info)


def main() -> None:
    """
    Main CLI entrypoint, referenced by pyproject.toml's [project.scripts].

    If no subcommand is given, help is shown and the exit code is USER_ERROR.
    """
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="stagebuild",
        description="stagebuild: multi-stage build-and-packaging pipelines.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)

    args = root_parser.parse_args()

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
