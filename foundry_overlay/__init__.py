# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
foundry-overlay: keeps a verified manifest of upstream Foundry release archives.

The manifest (sources.json) maps a release channel to the archive URLs and
SHA-256 digests that the packaging step fetches. Everything in this package
exists to produce that file safely.
"""

__version__ = "0.1.0"
