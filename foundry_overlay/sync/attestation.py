# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Build-provenance verification for extracted release binaries.

Upstream attests each binary it ships. For every expected binary found at the
root of a platform archive we ask the GitHub CLI to verify that attestation
against the expected owner:

    gh attestation verify <binary> --owner foundry-rs

A present binary that fails verification is fatal: no manifest entry may point
at an archive containing unverified code. A binary that is simply absent is
only a warning, since some platforms ship without a tool.

Each platform is extracted into its own directory so that, say, the darwin
`forge` never overwrites the linux `forge` before both have been checked.
"""

import logging
import subprocess
import tarfile
import threading
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from foundry_overlay.logging.logger import get_logger
from foundry_overlay.sync.errors import AttestationError, DownloadError, SyncCancelled

_logger: logging.Logger = get_logger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

_DIAGNOSTIC_TAIL_CHARS = 2000


@dataclass(frozen=True)
class MissingBinary:
    """An expected binary that wasn't in a platform's archive."""

    platform: str
    binary: str


@dataclass(frozen=True)
class AttestationReport:
    """What happened to each expected binary of one platform archive."""

    platform: str
    verified: tuple[str, ...]
    missing: tuple[MissingBinary, ...]


def _is_safe_tar_member(member: tarfile.TarInfo, extract_dir: Path) -> bool:
    """
    Validate a tar member against path traversal attacks.

    Rejects absolute paths, '..' components, links and anything that resolves
    outside the extraction directory.
    """
    if member.name.startswith("/") or member.name.startswith("\\"):
        return False

    if ".." in member.name.split("/"):
        return False

    resolved = (extract_dir / member.name).resolve()
    try:
        resolved.relative_to(extract_dir.resolve())
    except ValueError:
        return False

    if member.issym() or member.islnk():
        return False

    return member.isfile() or member.isdir()


def extract_archive(archive_path: Path, extract_dir: Path) -> int:
    """
    Safely extract a .tar.gz archive into extract_dir.

    Returns the count of extracted files.

    Raises:
        AttestationError: The archive contains an unsafe member. An archive
            that tries to escape its directory is treated as tampered.
        DownloadError: The archive is not a readable gzip tarball.
    """
    extract_dir.mkdir(parents=True, exist_ok=True)
    file_count = 0
    # Extraction filters (PEP 706) only exist on 3.10.12+ and 3.11.4+.
    extract_options = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}

    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                if not _is_safe_tar_member(member, extract_dir):
                    raise AttestationError(
                        f"Archive {archive_path.name} contains unsafe member '{member.name}'"
                    )
            for member in members:
                tar.extract(member, path=extract_dir, set_attrs=False, **extract_options)
                if member.isfile():
                    file_count += 1
    except (tarfile.TarError, EOFError, zlib.error) as err:
        raise DownloadError(f"Archive {archive_path.name} is corrupt: {err}") from err

    return file_count


class AttestationVerifier:
    """Runs the external attestation check for every expected binary."""

    def __init__(
        self,
        command: Sequence[str] = ("gh", "attestation", "verify"),
        timeout_seconds: float = 120.0,
        runner: Optional[Runner] = None,
    ) -> None:
        self._command = tuple(command)
        self._timeout = timeout_seconds
        self._runner = runner or subprocess.run

    def verify(
        self,
        archive_path: Path,
        owner: str,
        binaries: Sequence[str],
        scratch_dir: Path,
        platform: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> AttestationReport:
        """
        Extract an archive and verify each expected binary it contains.

        Args:
            archive_path: Downloaded platform archive.
            owner: Owner whose build pipeline must have produced the binaries.
            binaries: Binary names expected at the archive root.
            scratch_dir: Empty directory reserved for this platform.
            platform: Platform key, used for reporting only.
            cancel: Checked before each binary.

        Returns:
            AttestationReport listing verified and missing binaries.

        Raises:
            AttestationError: A present binary failed verification, the
                verifier timed out, or the verifier can't be run at all.
            DownloadError: The archive can't be read.
            SyncCancelled: `cancel` was set.
        """
        file_count = extract_archive(archive_path, scratch_dir)
        _logger.debug(
            "Archive extracted",
            extra={"platform": platform, "files": file_count, "dir": str(scratch_dir)},
        )

        verified: list[str] = []
        missing: list[MissingBinary] = []

        for binary in binaries:
            if cancel is not None and cancel.is_set():
                raise SyncCancelled(f"Attestation for {platform} cancelled")

            binary_path = scratch_dir / binary
            if not binary_path.is_file():
                missing.append(MissingBinary(platform=platform, binary=binary))
                _logger.warning(
                    "Binary missing from archive",
                    extra={"platform": platform, "binary": binary, "archive": archive_path.name},
                )
                continue

            self._verify_binary(binary_path, owner, platform)
            verified.append(binary)

        _logger.info(
            "Attestations verified",
            extra={"platform": platform, "verified": verified, "missing": [m.binary for m in missing]},
        )
        return AttestationReport(platform=platform, verified=tuple(verified), missing=tuple(missing))

    def _verify_binary(self, binary_path: Path, owner: str, platform: str) -> None:
        cmd = [*self._command, str(binary_path), "--owner", owner]
        try:
            result = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as err:
            raise AttestationError(
                f"Attestation verifier '{self._command[0]}' is not installed"
            ) from err
        except subprocess.TimeoutExpired as err:
            raise AttestationError(
                f"Attestation check for {platform}/{binary_path.name} timed out "
                f"after {self._timeout:g} seconds"
            ) from err

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()[-_DIAGNOSTIC_TAIL_CHARS:]
            raise AttestationError(
                f"Attestation failed for {platform}/{binary_path.name} "
                f"(owner {owner}): {detail or f'exit status {result.returncode}'}"
            )

        _logger.debug(
            "Binary attested",
            extra={"platform": platform, "binary": binary_path.name, "owner": owner},
        )
