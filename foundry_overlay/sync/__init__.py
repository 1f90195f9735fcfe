# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release synchronization subsystem.

Resolves a channel to an upstream release, downloads each platform archive,
checks build provenance by attestation, hashes the archives and merges the
result into the manifest. The manifest is only ever rewritten once, at the
end, and only when every platform succeeded.
"""
