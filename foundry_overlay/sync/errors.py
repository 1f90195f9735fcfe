# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Failure kinds of the synchronization pipeline.

Every exception here is fatal for the run and is raised before the manifest
is touched, so re-running the whole update after any of them is always safe.
A binary missing from an archive is not an error; see MissingBinary in
foundry_overlay.sync.attestation.
"""


class SyncError(Exception):
    """Base for all synchronization failures."""


class ReleaseNotFoundError(SyncError):
    """The upstream has no release under the requested channel or tag."""


class NetworkError(SyncError):
    """Transport failure or timeout talking to the upstream."""


class DownloadError(SyncError):
    """An archive transfer was incomplete, rejected, or produced a corrupt file."""


class UnknownPlatformError(SyncError):
    """A platform key has no upstream archive name. Always a configuration bug."""


class AttestationError(SyncError):
    """A binary present in an archive failed provenance verification."""


class MergeConflictError(SyncError):
    """The persisted manifest is unreadable, corrupt, or changed underneath us."""


class UnknownChannelError(SyncError):
    """The manifest has no entry for the requested channel."""


class SyncCancelled(SyncError):
    """A task stopped early because another task already failed."""
