# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Update pipeline: one channel in, at most one manifest write out.

    IDLE -> RESOLVING_RELEASE -> PROCESSING_ARTIFACTS -> MERGING -> DONE
                 \\                      |                  /
                  `---------------> FAILED <---------------'

PROCESSING_ARTIFACTS runs one task per platform (fetch, verify, hash) and one
task for the manpages archive (fetch, hash) on a thread pool. The tasks share
nothing except a cancel event: the first fatal failure sets it, queued tasks
are cancelled, and running ones stop at their next checkpoint. Merging only
starts once every task has succeeded.

All downloads and extractions live in one TemporaryDirectory with a
subdirectory per platform, removed on every exit path.
"""

import logging
import tempfile
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from foundry_overlay.config.schema import SyncConfig
from foundry_overlay.logging.logger import get_logger
from foundry_overlay.sync.attestation import AttestationVerifier, MissingBinary
from foundry_overlay.sync.errors import SyncCancelled
from foundry_overlay.sync.fetcher import ArchiveFetcher
from foundry_overlay.sync.manifest import (
    ArchiveRecord,
    ManifestEntry,
    load_manifest,
    merge_entry,
    write_manifest,
)
from foundry_overlay.sync.platforms import archive_filename, manpages_filename
from foundry_overlay.sync.release import Release, ReleaseMetadataClient
from foundry_overlay.utils.hashing import compute_sha256

_logger: logging.Logger = get_logger(__name__)


class SyncState(Enum):
    IDLE = "idle"
    RESOLVING_RELEASE = "resolving_release"
    PROCESSING_ARTIFACTS = "processing_artifacts"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PlatformResult:
    platform: str
    record: ArchiveRecord
    verified: tuple[str, ...] = ()
    missing: tuple[MissingBinary, ...] = ()


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a successful run."""

    channel: str
    entry: ManifestEntry
    missing_binaries: tuple[MissingBinary, ...] = ()
    manifest_written: bool = False
    backup_path: Optional[Path] = None
    history: tuple[SyncState, ...] = field(default_factory=tuple)


class SyncPipeline:
    """
    Drives one update of the manifest for one channel.

    Collaborators are injectable so each stage can be replaced in tests;
    by default they are built from the SyncConfig.
    """

    def __init__(
        self,
        config: SyncConfig,
        manifest_path: Optional[Path] = None,
        client: Optional[ReleaseMetadataClient] = None,
        fetcher: Optional[ArchiveFetcher] = None,
        verifier: Optional[AttestationVerifier] = None,
    ) -> None:
        self._config = config
        self._manifest_path = manifest_path if manifest_path is not None else Path(config.manifest_path)
        self._client = client or ReleaseMetadataClient(config)
        self._fetcher = fetcher or ArchiveFetcher(
            timeout_seconds=config.http_timeout_seconds,
            deadline_seconds=config.download_deadline_seconds,
        )
        self._verifier = verifier or AttestationVerifier(
            command=config.attestation_command,
            timeout_seconds=config.attestation_timeout_seconds,
        )
        self.state = SyncState.IDLE
        self.history: list[SyncState] = [SyncState.IDLE]
        self.failure: Optional[BaseException] = None

    def _transition(self, state: SyncState) -> None:
        _logger.debug(
            "State transition",
            extra={"from_state": self.state.value, "to_state": state.value},
        )
        self.state = state
        self.history.append(state)

    def run(self, channel: str, dry_run: bool = False) -> SyncResult:
        """
        Run the whole update for `channel`.

        Args:
            channel: Channel to resolve; also the manifest key written.
            dry_run: Build and merge the entry but don't write the file.

        Returns:
            SyncResult describing the new entry.

        Raises:
            SyncError: Any fatal failure. The manifest on disk is untouched.
        """
        if self.state is not SyncState.IDLE:
            raise RuntimeError("A SyncPipeline instance runs once; create a new one")

        try:
            snapshot = load_manifest(self._manifest_path)

            self._transition(SyncState.RESOLVING_RELEASE)
            release = self._client.resolve(channel)

            self._transition(SyncState.PROCESSING_ARTIFACTS)
            platform_results, manpages = self._process_artifacts(release)

            self._transition(SyncState.MERGING)
            entry = ManifestEntry(
                version=channel,
                tag=release.tag,
                platforms={result.platform: result.record for result in platform_results},
                manpages=manpages,
            )
            merged = merge_entry(snapshot.data, entry, channel)

            backup_path = None
            if dry_run:
                _logger.info(
                    "Dry run, manifest not written",
                    extra={"channel": channel, "entry": entry.to_dict()},
                )
            else:
                backup_path = write_manifest(snapshot, merged)

            self._transition(SyncState.DONE)
        except BaseException as err:
            self.failure = err
            self._transition(SyncState.FAILED)
            raise

        missing = tuple(m for result in platform_results for m in result.missing)
        _logger.info(
            "Channel updated",
            extra={
                "channel": channel,
                "tag": release.tag,
                "platforms": sorted(entry.platforms),
                "missing_binaries": [f"{m.platform}/{m.binary}" for m in missing],
                "dry_run": dry_run,
            },
        )
        return SyncResult(
            channel=channel,
            entry=entry,
            missing_binaries=missing,
            manifest_written=not dry_run,
            backup_path=backup_path,
            history=tuple(self.history),
        )

    def _process_artifacts(self, release: Release) -> tuple[list[PlatformResult], ArchiveRecord]:
        # Building every URL first makes a bad platform key fail before any download.
        urls = {platform: release.archive_url(platform) for platform in self._config.platforms}

        if not self._config.verify_attestations:
            _logger.warning(
                "ATTESTATION VERIFICATION DISABLED: binaries in this entry are not provenance-checked",
                extra={"channel": release.channel, "tag": release.tag},
            )

        cancel = threading.Event()
        with tempfile.TemporaryDirectory(prefix="foundry-overlay-") as scratch:
            scratch_root = Path(scratch)
            with ThreadPoolExecutor(
                max_workers=self._config.max_workers,
                thread_name_prefix="foundry-sync",
            ) as pool:
                platform_futures = [
                    pool.submit(
                        self._process_platform, release, platform, urls[platform], scratch_root, cancel
                    )
                    for platform in self._config.platforms
                ]
                manpages_future = pool.submit(self._process_manpages, release, scratch_root, cancel)
                futures: list[Future] = [*platform_futures, manpages_future]

                try:
                    wait(futures, return_when=FIRST_EXCEPTION)
                    failure = _first_failure(futures)
                    if failure is not None:
                        raise failure
                except BaseException:
                    cancel.set()
                    for future in futures:
                        future.cancel()
                    raise

            return [future.result() for future in platform_futures], manpages_future.result()

    def _process_platform(
        self,
        release: Release,
        platform: str,
        url: str,
        scratch_root: Path,
        cancel: threading.Event,
    ) -> PlatformResult:
        if cancel.is_set():
            raise SyncCancelled(f"Processing of {platform} cancelled")

        platform_dir = scratch_root / platform
        archive_path = self._fetcher.fetch(
            url, platform_dir / archive_filename(release.tag, platform), cancel
        )

        verified: tuple[str, ...] = ()
        missing: tuple[MissingBinary, ...] = ()
        if self._config.verify_attestations:
            report = self._verifier.verify(
                archive_path,
                self._config.expected_owner,
                self._config.binaries,
                platform_dir / "extracted",
                platform=platform,
                cancel=cancel,
            )
            verified, missing = report.verified, report.missing

        if cancel.is_set():
            raise SyncCancelled(f"Processing of {platform} cancelled")

        digest = compute_sha256(archive_path)
        _logger.info(
            "Platform archive ready",
            extra={"platform": platform, "url": url, "sha256": digest},
        )
        return PlatformResult(
            platform=platform,
            record=ArchiveRecord(url=url, sha256=digest),
            verified=verified,
            missing=missing,
        )

    def _process_manpages(
        self,
        release: Release,
        scratch_root: Path,
        cancel: threading.Event,
    ) -> ArchiveRecord:
        if cancel.is_set():
            raise SyncCancelled("Processing of manpages cancelled")

        url = release.manpages_url()
        archive_path = self._fetcher.fetch(
            url, scratch_root / "manpages" / manpages_filename(release.tag), cancel
        )
        if cancel.is_set():
            raise SyncCancelled("Processing of manpages cancelled")

        digest = compute_sha256(archive_path)
        _logger.info("Manpages archive ready", extra={"url": url, "sha256": digest})
        return ArchiveRecord(url=url, sha256=digest)


def _first_failure(futures: list[Future]) -> Optional[BaseException]:
    """
    The exception to report for a failed batch.

    Cancellations are a consequence of some other failure, so a real error
    wins over SyncCancelled whenever one exists.
    """
    errors = [
        future.exception()
        for future in futures
        if future.done() and not future.cancelled() and future.exception() is not None
    ]
    for error in errors:
        if not isinstance(error, SyncCancelled):
            return error
    return errors[0] if errors else None
