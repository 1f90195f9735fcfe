# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for archive extraction and attestation verification.
"""

import io
import subprocess
import tarfile
import threading
from pathlib import Path
from typing import Callable

import pytest
from conftest import BINARIES, FakeRunner, tarball_bytes

from foundry_overlay.sync.attestation import (
    AttestationVerifier,
    MissingBinary,
    extract_archive,
)
from foundry_overlay.sync.errors import AttestationError, DownloadError, SyncCancelled


def _archive(tmp_path: Path, files: dict[str, bytes], name: str = "archive.tar.gz") -> Path:
    path = tmp_path / name
    path.write_bytes(tarball_bytes(files))
    return path


def _full_archive(tmp_path: Path) -> Path:
    return _archive(tmp_path, {name: name.encode() for name in BINARIES})


class TestExtractArchive:
    def test_extracts_files(self, tmp_path: Path) -> None:
        archive = _full_archive(tmp_path)
        target = tmp_path / "out"

        assert extract_archive(archive, target) == 4
        assert (target / "forge").read_bytes() == b"forge"

    def test_traversal_member_is_rejected(self, tmp_path: Path) -> None:
        archive = _archive(tmp_path, {"../escape": b"evil", "forge": b"forge"})
        with pytest.raises(AttestationError, match="unsafe member"):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "escape").exists()

    def test_absolute_member_is_rejected(self, tmp_path: Path) -> None:
        archive = _archive(tmp_path, {"/etc/forge": b"evil"})
        with pytest.raises(AttestationError):
            extract_archive(archive, tmp_path / "out")

    def test_symlink_member_is_rejected(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            link = tarfile.TarInfo("forge")
            link.type = tarfile.SYMTYPE
            link.linkname = "/usr/bin/true"
            tar.addfile(link)
        archive = tmp_path / "links.tar.gz"
        archive.write_bytes(buffer.getvalue())

        with pytest.raises(AttestationError):
            extract_archive(archive, tmp_path / "out")

    @pytest.mark.filterwarnings("ignore::DeprecationWarning")
    def test_extracts_on_tarfile_without_filters(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        # 3.10.0-3.10.11 and 3.11.0-3.11.3 have neither data_filter nor extract(filter=...).
        original_extract = tarfile.TarFile.extract
        seen_options: list[dict] = []

        def extract_without_filter(self, member, path="", set_attrs=True, *, numeric_owner=False):
            seen_options.append({"set_attrs": set_attrs})
            return original_extract(self, member, path=path, set_attrs=set_attrs, numeric_owner=numeric_owner)

        monkeypatch.delattr(tarfile, "data_filter", raising=False)
        monkeypatch.setattr(tarfile.TarFile, "extract", extract_without_filter)

        target = tmp_path / "out"
        assert extract_archive(_full_archive(tmp_path), target) == 4
        assert (target / "cast").read_bytes() == b"cast"
        assert seen_options == [{"set_attrs": False}] * 4

    def test_corrupt_archive_is_download_error(self, tmp_path: Path) -> None:
        archive = tmp_path / "corrupt.tar.gz"
        archive.write_bytes(b"definitely not gzip")
        with pytest.raises(DownloadError, match="corrupt"):
            extract_archive(archive, tmp_path / "out")


class TestVerify:
    def test_all_binaries_verified(self, tmp_path: Path) -> None:
        runner = FakeRunner()
        verifier = AttestationVerifier(runner=runner)

        report = verifier.verify(
            _full_archive(tmp_path), "foundry-rs", BINARIES, tmp_path / "x86_64-linux",
            platform="x86_64-linux",
        )

        assert report.verified == BINARIES
        assert report.missing == ()
        assert runner.checked_binaries == sorted(BINARIES)

    def test_invocation_shape(self, tmp_path: Path) -> None:
        runner = FakeRunner()
        verifier = AttestationVerifier(command=("gh", "attestation", "verify"), runner=runner)
        scratch = tmp_path / "scratch"

        verifier.verify(_archive(tmp_path, {"forge": b"f"}), "foundry-rs", ["forge"], scratch)

        assert runner.calls == [
            ["gh", "attestation", "verify", str(scratch / "forge"), "--owner", "foundry-rs"]
        ]

    def test_missing_binary_is_a_warning_not_an_error(
        self, tmp_path: Path, json_logs: Callable[[], list[dict]]
    ) -> None:
        runner = FakeRunner()
        archive = _archive(tmp_path, {"forge": b"f", "cast": b"c", "anvil": b"a"})

        report = AttestationVerifier(runner=runner).verify(
            archive, "foundry-rs", BINARIES, tmp_path / "out", platform="aarch64-darwin"
        )

        assert report.verified == ("forge", "cast", "anvil")
        assert report.missing == (MissingBinary(platform="aarch64-darwin", binary="chisel"),)
        assert "chisel" not in runner.checked_binaries

        warnings = [entry for entry in json_logs() if entry["level"] == "WARNING"]
        assert [(w["platform"], w["binary"]) for w in warnings] == [("aarch64-darwin", "chisel")]
        assert warnings[0]["module"] == "foundry_overlay.sync.attestation"

    def test_failed_attestation_is_fatal(self, tmp_path: Path) -> None:
        runner = FakeRunner(fail_for=("cast",))
        with pytest.raises(AttestationError, match="no matching attestations"):
            AttestationVerifier(runner=runner).verify(
                _full_archive(tmp_path), "foundry-rs", BINARIES, tmp_path / "out",
                platform="x86_64-linux",
            )

    def test_failure_without_output_reports_exit_status(self, tmp_path: Path) -> None:
        def runner(cmd, **kwargs):  # type: ignore[no-untyped-def]
            return subprocess.CompletedProcess(cmd, 3, "", "")

        with pytest.raises(AttestationError, match="exit status 3"):
            AttestationVerifier(runner=runner).verify(
                _archive(tmp_path, {"forge": b"f"}), "foundry-rs", ["forge"], tmp_path / "out"
            )

    def test_timeout_is_fatal(self, tmp_path: Path) -> None:
        def runner(cmd, **kwargs):  # type: ignore[no-untyped-def]
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        verifier = AttestationVerifier(timeout_seconds=5, runner=runner)
        with pytest.raises(AttestationError, match="timed out"):
            verifier.verify(_archive(tmp_path, {"forge": b"f"}), "foundry-rs", ["forge"], tmp_path / "out")

    def test_missing_verifier_tool_is_fatal(self, tmp_path: Path) -> None:
        def runner(cmd, **kwargs):  # type: ignore[no-untyped-def]
            raise FileNotFoundError(cmd[0])

        with pytest.raises(AttestationError, match="not installed"):
            AttestationVerifier(runner=runner).verify(
                _archive(tmp_path, {"forge": b"f"}), "foundry-rs", ["forge"], tmp_path / "out"
            )

    def test_timeout_is_passed_to_runner(self, tmp_path: Path) -> None:
        seen: dict[str, object] = {}

        def runner(cmd, **kwargs):  # type: ignore[no-untyped-def]
            seen.update(kwargs)
            return subprocess.CompletedProcess(cmd, 0, "", "")

        AttestationVerifier(timeout_seconds=42, runner=runner).verify(
            _archive(tmp_path, {"forge": b"f"}), "foundry-rs", ["forge"], tmp_path / "out"
        )
        assert seen["timeout"] == 42
        assert seen["check"] is False

    def test_cancel_stops_before_next_binary(self, tmp_path: Path) -> None:
        cancel = threading.Event()
        cancel.set()
        runner = FakeRunner()

        with pytest.raises(SyncCancelled):
            AttestationVerifier(runner=runner).verify(
                _full_archive(tmp_path), "foundry-rs", BINARIES, tmp_path / "out", cancel=cancel
            )
        assert runner.calls == []

    def test_platforms_extract_into_separate_directories(self, tmp_path: Path) -> None:
        verifier = AttestationVerifier(runner=FakeRunner())
        darwin = _archive(tmp_path, {"forge": b"darwin forge"}, "darwin.tar.gz")
        linux = _archive(tmp_path, {"forge": b"linux forge"}, "linux.tar.gz")

        verifier.verify(darwin, "foundry-rs", ["forge"], tmp_path / "aarch64-darwin")
        verifier.verify(linux, "foundry-rs", ["forge"], tmp_path / "x86_64-linux")

        assert (tmp_path / "aarch64-darwin" / "forge").read_bytes() == b"darwin forge"
        assert (tmp_path / "x86_64-linux" / "forge").read_bytes() == b"linux forge"
