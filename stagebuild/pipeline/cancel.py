# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Cooperative cancellation signal shared by every blocking pipeline step."""

import threading

from stagebuild.pipeline.errors import PipelineCancelled


class CancelToken:
    """
    A one-way flag the caller sets to abort a running pipeline.

    Steps call `raise_if_cancelled()` between units of work; the command
    runner additionally polls `is_cancelled` while a subprocess is alive and
    kills it when the flag goes up.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds, waking early on cancellation."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled()
