# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for foundry-overlay tests.

Nothing here touches the network or runs the real `gh` binary. HTTP goes
through FakeOpener (same call shape as urllib.request.urlopen) and
attestation checks go through FakeRunner (same call shape as subprocess.run).
"""

import importlib
import io
import json
import logging
import subprocess
import sys
import tarfile
import textwrap
import threading
from email.message import Message
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.error import HTTPError

import pytest

from foundry_overlay.config.schema import SyncConfig
from foundry_overlay.sync.platforms import PLATFORM_ARCHIVE_NAMES
from foundry_overlay.utils.hashing import compute_sha256_bytes

API_BASE = "https://api.test"
DOWNLOAD_BASE = "https://dl.test"
BINARIES = ("forge", "cast", "anvil", "chisel")


class FakeResponse:
    """Enough of http.client.HTTPResponse for the release client and fetcher."""

    def __init__(self, body: bytes, headers: Optional[dict[str, str]] = None) -> None:
        self._stream = io.BytesIO(body)
        self.headers = (
            headers if headers is not None else {"Content-Length": str(len(body))}
        )

    def read(self, amt: Optional[int] = None) -> bytes:
        return self._stream.read() if amt is None else self._stream.read(amt)

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stream.close()


Route = Union[bytes, FakeResponse, BaseException, Callable[[], object]]


def http_error(url: str, code: int) -> HTTPError:
    return HTTPError(url, code, "error", Message(), None)


class FakeOpener:
    """Serves canned responses by URL; unknown URLs get a 404."""

    def __init__(self, routes: Optional[dict[str, Route]] = None) -> None:
        self.routes: dict[str, Route] = dict(routes or {})
        self.requests: list = []
        self._lock = threading.Lock()

    @property
    def urls(self) -> list[str]:
        return [request.full_url for request in self.requests]

    def __call__(self, request, timeout=None):  # type: ignore[no-untyped-def]
        with self._lock:
            self.requests.append(request)
        url = request.full_url
        if url not in self.routes:
            raise http_error(url, 404)
        route = self.routes[url]
        if callable(route) and not isinstance(route, FakeResponse):
            route = route()
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, bytes):
            return FakeResponse(route)
        return route


class FakeRunner:
    """Records attestation invocations; fails for the listed binary names."""

    def __init__(self, fail_for: tuple[str, ...] = ()) -> None:
        self.fail_for = fail_for
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    @property
    def checked_binaries(self) -> list[str]:
        return sorted(Path(cmd[-3]).name for cmd in self.calls)

    def __call__(self, cmd, **kwargs):  # type: ignore[no-untyped-def]
        with self._lock:
            self.calls.append(list(cmd))
        if Path(cmd[-3]).name in self.fail_for:
            return subprocess.CompletedProcess(cmd, 1, "", "Error: no matching attestations found")
        return subprocess.CompletedProcess(cmd, 0, "Verification succeeded", "")


def tarball_bytes(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def index_url(channel: str) -> str:
    return f"{API_BASE}/repos/foundry-rs/foundry/releases/tags/{channel}"


def base_url(tag: str) -> str:
    return f"{DOWNLOAD_BASE}/foundry-rs/foundry/releases/download/{tag}/"


def archive_url(tag: str, platform: str) -> str:
    return f"{base_url(tag)}foundry_{tag}_{PLATFORM_ARCHIVE_NAMES[platform]}.tar.gz"


def manpages_url(tag: str) -> str:
    return f"{base_url(tag)}foundry_man_{tag}.tar.gz"


class Upstream:
    """A fake upstream release: index response, platform archives, manpages."""

    def __init__(self, channel: str = "stable", tag: str = "v1.2.3") -> None:
        self.channel = channel
        self.tag = tag
        self.archives: dict[str, bytes] = {}
        self.manpages = tarball_bytes({f"{name}.1.gz": f"man {name}".encode() for name in BINARIES})

    def add_platform(self, platform: str, omit: tuple[str, ...] = ()) -> None:
        files = {
            name: f"{name} for {platform} at {self.tag}".encode()
            for name in BINARIES
            if name not in omit
        }
        self.archives[platform] = tarball_bytes(files)

    def sha256(self, platform: str) -> str:
        return compute_sha256_bytes(self.archives[platform])

    @property
    def manpages_sha256(self) -> str:
        return compute_sha256_bytes(self.manpages)

    def routes(self) -> dict[str, Route]:
        routes: dict[str, Route] = {
            index_url(self.channel): json.dumps({"tag_name": self.tag, "name": "Stable"}).encode(),
            manpages_url(self.tag): self.manpages,
        }
        for platform, data in self.archives.items():
            routes[archive_url(self.tag, platform)] = data
        return routes


@pytest.fixture()
def sync_config() -> SyncConfig:
    return SyncConfig(api_base=API_BASE, download_base=DOWNLOAD_BASE, max_workers=4)


@pytest.fixture()
def upstream() -> Upstream:
    """Upstream with all three default platforms present and complete."""
    release = Upstream()
    for platform in ("aarch64-darwin", "x86_64-darwin", "x86_64-linux"):
        release.add_platform(platform)
    return release


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """Smallest valid config, pointed at the fake upstream."""
    config_content = textwrap.dedent(f"""\
        global:
          config_version: "1.0.0"
          log_level: "DEBUG"
        sync:
          api_base: "{API_BASE}"
          download_base: "{DOWNLOAD_BASE}"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """Valid YAML that fails schema validation (missing config_version)."""
    config_content = textwrap.dedent("""\
        global:
          log_level: "INFO"
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file


@pytest.fixture()
def json_logs(capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> Callable[[], list[dict]]:
    """
    Point every package logger's stdout handler at the captured stdout and
    return a reader that parses what was logged so far, one dict per line.

    Module loggers are created at import time, so their handlers hold whatever
    sys.stdout was then; capsys swaps sys.stdout per test.
    """
    importlib.import_module("foundry_overlay.sync.pipeline")
    importlib.import_module("foundry_overlay.sync.integrity")

    # capsys replaces sys.stdout between the setup and call phases, so resolve
    # it at write time rather than binding the setup-phase stream.
    class _CurrentStdout:
        def write(self, text: str) -> int:
            return sys.stdout.write(text)

        def flush(self) -> None:
            sys.stdout.flush()

    for name, existing in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(existing, logging.Logger) or not name.startswith("foundry_overlay"):
            continue
        for handler in existing.handlers:
            if type(handler) is logging.StreamHandler:
                monkeypatch.setattr(handler, "stream", _CurrentStdout())

    def read() -> list[dict]:
        out = capsys.readouterr().out
        return [json.loads(line) for line in out.splitlines() if line.startswith("{")]

    return read
