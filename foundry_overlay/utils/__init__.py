# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared helpers: SHA-256 digests and atomic file writes.

Nothing in here knows about releases or manifests.
"""
