# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The persisted manifest (sources.json) and how entries are merged into it.

File layout, one top-level key per channel:

    {
      "stable": {
        "version": "stable",
        "tag": "v1.2.3",
        "platforms": {
          "x86_64-linux": {"url": ".../foundry_v1.2.3_linux_amd64.tar.gz", "sha256": "..."},
          ...
        },
        "manpages": {"url": ".../foundry_man_v1.2.3.tar.gz", "sha256": "..."}
      },
      "nightly": {...}
    }

The packaging step reads manifest[channel].platforms[system] and
manifest[channel].manpages, selecting the channel with FOUNDRY_VERSION.

Discipline for writers:
  - read the file once, up front (load_manifest)
  - build the new entry entirely in memory
  - replace exactly one channel key (merge_entry); other channels pass
    through untouched, including shapes this code doesn't understand
  - back up the old file, then swap in the new one atomically (write_manifest)
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from foundry_overlay.logging.logger import get_logger
from foundry_overlay.sync.errors import MergeConflictError, UnknownChannelError
from foundry_overlay.utils.filesystem import atomic_write, backup_file
from foundry_overlay.utils.hashing import compute_sha256_bytes, is_sha256_hex

_logger: logging.Logger = get_logger(__name__)

DEFAULT_CHANNEL = "stable"

# Environment variable the packaging step reads to pick a channel.
CHANNEL_ENV = "FOUNDRY_VERSION"

BACKUP_SUFFIX = ".bak"


@dataclass(frozen=True)
class ArchiveRecord:
    """URL and flat SHA-256 of one verified archive."""

    url: str
    sha256: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "sha256": self.sha256}

    @classmethod
    def from_dict(cls, data: Any, where: str) -> "ArchiveRecord":
        if not isinstance(data, dict):
            raise MergeConflictError(f"{where} must be an object with url and sha256")
        url = data.get("url")
        sha256 = data.get("sha256")
        if not isinstance(url, str) or not url:
            raise MergeConflictError(f"{where}.url is missing or not a string")
        if not isinstance(sha256, str) or not is_sha256_hex(sha256.lower()):
            raise MergeConflictError(f"{where}.sha256 is not a SHA-256 hex digest")
        return cls(url=url, sha256=sha256.lower())


# Same shape, one per release instead of one per platform.
ManpagesRecord = ArchiveRecord


@dataclass(frozen=True)
class ManifestEntry:
    """Everything the packaging step needs for one channel."""

    version: str
    tag: str
    platforms: dict[str, ArchiveRecord]
    manpages: ManpagesRecord

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "tag": self.tag,
            "platforms": {key: record.to_dict() for key, record in self.platforms.items()},
            "manpages": self.manpages.to_dict(),
        }


@dataclass(frozen=True)
class ManifestSnapshot:
    """
    The manifest as read at the start of a run.

    digest is the SHA-256 of the raw bytes that were read, or None when the
    file didn't exist; write_manifest uses it to notice concurrent edits.
    """

    path: Path
    data: dict[str, Any] = field(default_factory=dict)
    digest: Optional[str] = None


def _read_bytes(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as err:
        raise MergeConflictError(f"Cannot read manifest {path}: {err}") from err


def load_manifest(path: Path) -> ManifestSnapshot:
    """
    Read the manifest once.

    A missing file is an empty manifest. Anything else that isn't a JSON
    object is a MergeConflictError: overwriting it would lose data, so a
    human has to look at it first.
    """
    raw = _read_bytes(path)
    if raw is None:
        _logger.info("No existing manifest, starting empty", extra={"path": str(path)})
        return ManifestSnapshot(path=path)

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise MergeConflictError(f"Manifest {path} is not valid JSON: {err}") from err

    if not isinstance(data, dict):
        raise MergeConflictError(
            f"Manifest {path} must contain a JSON object, got {type(data).__name__}"
        )

    _logger.debug(
        "Manifest loaded",
        extra={"path": str(path), "channels": sorted(data.keys())},
    )
    return ManifestSnapshot(path=path, data=data, digest=compute_sha256_bytes(raw))


def merge_entry(
    manifest: Mapping[str, Any],
    entry: ManifestEntry,
    channel: str,
) -> dict[str, Any]:
    """
    Return a new manifest with `channel` replaced by `entry`.

    The prior entry for the channel is dropped wholesale, never field-merged.
    Every other key is deep-copied through with its value unchanged. The input
    mapping is not modified.

    Raises:
        ValueError: entry.version doesn't match channel. Entries are keyed by
            exactly the channel name the packaging step will ask for.
    """
    if entry.version != channel:
        raise ValueError(
            f"Entry version '{entry.version}' does not match channel '{channel}'"
        )

    merged = {key: copy.deepcopy(value) for key, value in manifest.items() if key != channel}
    merged[channel] = entry.to_dict()
    return merged


def render_manifest(manifest: Mapping[str, Any]) -> str:
    return json.dumps(manifest, indent=2, sort_keys=True) + "\n"


def write_manifest(snapshot: ManifestSnapshot, manifest: Mapping[str, Any]) -> Optional[Path]:
    """
    Persist a merged manifest over the file `snapshot` was read from.

    Steps:
      1. Re-read the file and make sure it still matches the snapshot.
      2. Copy the current file to <name>.bak.
      3. Write the new content to a temp file and rename it into place.

    Returns:
        The backup path, or None if there was no previous file.

    Raises:
        MergeConflictError: The file changed on disk since it was read.
    """
    path = snapshot.path
    current = _read_bytes(path)
    current_digest = compute_sha256_bytes(current) if current is not None else None
    if current_digest != snapshot.digest:
        raise MergeConflictError(
            f"Manifest {path} changed on disk since it was read; refusing to overwrite"
        )

    backup_path = backup_file(path, BACKUP_SUFFIX)
    atomic_write(path, render_manifest(manifest))

    _logger.info(
        "Manifest written",
        extra={
            "path": str(path),
            "channels": sorted(manifest.keys()),
            "backup": str(backup_path) if backup_path else None,
        },
    )
    return backup_path


def parse_entry(data: Any, channel: str) -> ManifestEntry:
    """
    Validate one channel's raw entry the way the packaging step relies on it.

    Raises:
        MergeConflictError: The entry doesn't have the expected shape.
    """
    where = f"manifest[{channel!r}]"
    if not isinstance(data, dict):
        raise MergeConflictError(f"{where} must be an object")

    version = data.get("version")
    tag = data.get("tag")
    platforms = data.get("platforms")
    if not isinstance(version, str) or not isinstance(tag, str):
        raise MergeConflictError(f"{where} needs string 'version' and 'tag' fields")
    if not isinstance(platforms, dict) or not platforms:
        raise MergeConflictError(f"{where}.platforms must be a non-empty object")

    return ManifestEntry(
        version=version,
        tag=tag,
        platforms={
            key: ArchiveRecord.from_dict(value, f"{where}.platforms[{key!r}]")
            for key, value in platforms.items()
        },
        manpages=ArchiveRecord.from_dict(data.get("manpages"), f"{where}.manpages"),
    )


def selected_channel(environ: Optional[Mapping[str, str]] = None) -> str:
    """Channel the packaging step would build: FOUNDRY_VERSION, else stable."""
    env = os.environ if environ is None else environ
    return env.get(CHANNEL_ENV, "").strip() or DEFAULT_CHANNEL


def select_entry(manifest: Mapping[str, Any], channel: str) -> ManifestEntry:
    """
    Look up and validate the entry for a channel.

    Raises:
        UnknownChannelError: The manifest has no such channel.
        MergeConflictError: The entry is malformed.
    """
    if channel not in manifest:
        available = ", ".join(sorted(manifest)) or "none"
        raise UnknownChannelError(
            f"Foundry version '{channel}' not found in manifest (available: {available})"
        )
    return parse_entry(manifest[channel], channel)
