# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Deliverable provenance: checksum manifests written beside an exported
deliverable, and verification of a deliverable against its manifest.
"""
