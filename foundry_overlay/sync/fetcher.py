# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Archive fetcher: streams release archives to scratch storage.

The digest of an archive isn't known before it is downloaded, so a truncated
transfer can't be caught by hashing. Instead the received byte count is
checked against the announced Content-Length, and the file only appears at
its final path after that check passes. Anything at the target path is
therefore a complete download.
"""

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from foundry_overlay.logging.logger import get_logger
from foundry_overlay.sync.errors import DownloadError, NetworkError, SyncCancelled
from foundry_overlay.sync.http import (
    PROTOCOL_ERRORS,
    TRANSPORT_ERRORS,
    Opener,
    content_length,
    download_headers,
)

_logger: logging.Logger = get_logger(__name__)

STREAM_CHUNK_SIZE = 65_536  # 64 KiB


class ArchiveFetcher:
    """Downloads one URL at a time to a local path."""

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        opener: Optional[Opener] = None,
        chunk_size: int = STREAM_CHUNK_SIZE,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout_seconds
        self._opener = opener or urlopen
        self._chunk_size = chunk_size
        # timeout_seconds bounds each socket read; deadline_seconds bounds the whole transfer.
        self._deadline = deadline_seconds
        self._clock = clock

    def fetch(
        self,
        url: str,
        target_path: Path,
        cancel: Optional[threading.Event] = None,
    ) -> Path:
        """
        Stream `url` into `target_path`.

        Args:
            url: Exact archive URL.
            target_path: Final location of the archive.
            cancel: Checked between chunks; when set the download stops.

        Returns:
            target_path, which now holds the complete body.

        Raises:
            DownloadError: Non-2xx status, short or empty body.
            NetworkError: Transport failure, timeout, or the download ran
                past deadline_seconds.
            SyncCancelled: `cancel` was set mid-download.
        """
        target_path.parent.mkdir(parents=True, exist_ok=True)
        request = Request(url, headers=download_headers(), method="GET")

        tmp_fd = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(target_path.parent),
            prefix=".foundry_overlay_dl_",
            suffix=".part",
            delete=False,
        )
        tmp_path = Path(tmp_fd.name)

        _logger.info("Downloading archive", extra={"url": url})

        try:
            received, expected = self._stream(url, request, tmp_fd, cancel)

            if expected is not None and received != expected:
                raise DownloadError(
                    f"Incomplete download of {url}: got {received} of {expected} bytes"
                )
            if received == 0:
                raise DownloadError(f"Empty response body for {url}")

            tmp_fd.flush()
            os.fsync(tmp_fd.fileno())
            tmp_fd.close()
            os.replace(tmp_path, target_path)
        except BaseException:
            tmp_fd.close()
            if tmp_path.exists():
                tmp_path.unlink()
            raise

        _logger.info(
            "Download complete",
            extra={"url": url, "bytes": received, "path": str(target_path)},
        )
        return target_path

    def _stream(
        self,
        url: str,
        request: Request,
        sink,
        cancel: Optional[threading.Event],
    ) -> tuple[int, Optional[int]]:
        """Copy the response body into sink. Returns (received, announced length)."""
        received = 0
        started = self._clock()
        try:
            with self._opener(request, timeout=self._timeout) as response:
                expected = content_length(response)
                while True:
                    if cancel is not None and cancel.is_set():
                        raise SyncCancelled(f"Download of {url} cancelled")
                    elapsed = self._clock() - started
                    if self._deadline is not None and elapsed > self._deadline:
                        raise NetworkError(
                            f"Download of {url} exceeded {self._deadline:g} seconds "
                            f"after {received} bytes"
                        )
                    chunk = response.read(self._chunk_size)
                    if not chunk:
                        break
                    sink.write(chunk)
                    received += len(chunk)
        except HTTPError as err:
            raise DownloadError(f"HTTP {err.code} downloading {url}") from err
        except PROTOCOL_ERRORS as err:
            raise DownloadError(f"Transfer of {url} broke off: {err!r}") from err
        except TRANSPORT_ERRORS as err:
            raise NetworkError(f"Network failure downloading {url}: {err}") from err

        return received, expected
