# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Re-verification of a manifest entry against the live upstream archives.

This is the check the packaging step performs before it trusts an archive:
download the exact URL and compare its flat SHA-256 with the manifest. It is
exposed here so a manifest can be audited without building anything.
"""

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from foundry_overlay.logging.logger import get_logger
from foundry_overlay.sync.fetcher import ArchiveFetcher
from foundry_overlay.sync.manifest import ArchiveRecord, ManifestEntry
from foundry_overlay.utils.hashing import compute_sha256, verify_checksum

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class IntegrityReport:
    """Outcome of re-checking every archive of one entry."""

    channel: str
    is_valid: bool
    checked: list[str] = field(default_factory=list)
    mismatches: list[str] = field(default_factory=list)


def _filename(url: str) -> str:
    return Path(urlsplit(url).path).name or "archive"


def verify_entry(
    entry: ManifestEntry,
    fetcher: ArchiveFetcher,
    scratch_dir: Optional[Path] = None,
) -> IntegrityReport:
    """
    Download every archive referenced by `entry` and compare digests.

    Archives land in `scratch_dir/<platform>/`. Without a scratch_dir a
    temporary directory is used and removed afterwards.

    Reports all mismatches rather than stopping at the first one. Transport
    failures still raise (NetworkError/DownloadError): an archive that can't
    be fetched hasn't been checked.
    """
    if scratch_dir is None:
        with tempfile.TemporaryDirectory(prefix="foundry-overlay-verify-") as scratch:
            return verify_entry(entry, fetcher, Path(scratch))

    records: list[tuple[str, ArchiveRecord]] = sorted(entry.platforms.items())
    records.append(("manpages", entry.manpages))

    checked: list[str] = []
    mismatches: list[str] = []

    for name, record in records:
        archive_path = fetcher.fetch(record.url, scratch_dir / name / _filename(record.url))
        checked.append(name)

        if not verify_checksum(archive_path, record.sha256):
            actual = compute_sha256(archive_path)
            mismatches.append(name)
            _logger.error(
                "Checksum mismatch",
                extra={
                    "channel": entry.version,
                    "archive": name,
                    "expected": record.sha256[:16] + "...",
                    "actual": actual[:16] + "...",
                },
            )
        else:
            _logger.debug("Checksum verified", extra={"archive": name})

    is_valid = not mismatches
    if is_valid:
        _logger.info(
            "All archives verified",
            extra={"channel": entry.version, "checked_count": len(checked)},
        )
    return IntegrityReport(
        channel=entry.version,
        is_valid=is_valid,
        checked=checked,
        mismatches=mismatches,
    )
