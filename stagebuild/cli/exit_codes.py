# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI exit codes.

These are the only exit codes the CLI uses. Pipeline failures map onto
them by reason code.
"""

SUCCESS: int = 0
USER_ERROR: int = 1
CONFIG_ERROR: int = 2
RUNTIME_ERROR: int = 3
VALIDATION_ERROR: int = 4

_REASON_EXIT_CODES: dict[str, int] = {
    "ParameterFormatError": USER_ERROR,
    "UnknownParameterError": USER_ERROR,
    "ConfigError": CONFIG_ERROR,
    "PipelineSpecError": CONFIG_ERROR,
    "MissingArtifactError": VALIDATION_ERROR,
    "DuplicateDestinationError": VALIDATION_ERROR,
}


def exit_code_for_reason(reason_code: str) -> int:
    """Provision, import, build, copy, export failures and cancellation are runtime errors."""
    return _REASON_EXIT_CODES.get(reason_code, RUNTIME_ERROR)
