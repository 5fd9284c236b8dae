# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
stagebuild: a parameterized, multi-stage build-and-packaging pipeline engine.

A declarative pipeline spec provisions a toolchain environment, imports a
source tree into it, runs the clean/test/build sequence, and transplants a
named subset of the build output into a fresh runtime environment. Nothing
else from the build survives.
"""

__version__ = "0.1.0"
