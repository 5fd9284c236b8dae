# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Pipeline definition and execution.

  - spec: the declarative YAML schema and its loader
  - parameters: build parameter resolution and ${...} interpolation
  - model: the frozen, validated Pipeline built from a spec
  - runner: stage sequencing, failure propagation, teardown
  - errors: the error taxonomy every component raises from
"""
