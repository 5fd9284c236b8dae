# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Environments and the components that act on them.

  - backend: instantiate / install / run / export / teardown
  - provisioner: base + packages -> provisioned environment
  - importer: source tree -> environment, atomically
  - executor: ordered build commands, halting on first failure
  - extractor: named artifacts -> brand-new environment
  - cache: optional layer cache for provisioned environments
"""
