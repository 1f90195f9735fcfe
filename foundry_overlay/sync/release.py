# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Release metadata client.

Turns a channel name into a concrete release by asking the GitHub release
index for the release tagged with that name. Upstream publishes moving
"stable" and "nightly" tags alongside fixed version tags, so the same query
covers all three kinds of channel. Only `tag_name` is read from the response.

Failures are not retried here. A NetworkError aborts the run, and the run as a
whole is safe to repeat.
"""

import json
import logging
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.error import HTTPError
from urllib.parse import quote
from urllib.request import Request, urlopen

from foundry_overlay.config.schema import SyncConfig
from foundry_overlay.logging.logger import get_logger
from foundry_overlay.sync.errors import NetworkError, ReleaseNotFoundError
from foundry_overlay.sync.http import PROTOCOL_ERRORS, TRANSPORT_ERRORS, Opener, api_headers
from foundry_overlay.sync.platforms import archive_filename, manpages_filename

_logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class Release:
    """A channel resolved to an immutable tag and its download location."""

    channel: str
    tag: str
    base_url: str

    def archive_url(self, platform: str) -> str:
        return self.base_url + archive_filename(self.tag, platform)

    def manpages_url(self) -> str:
        return self.base_url + manpages_filename(self.tag)


class ReleaseMetadataClient:
    """Resolves channels against the upstream release index."""

    def __init__(
        self,
        config: SyncConfig,
        opener: Optional[Opener] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._config = config
        self._opener = opener or urlopen
        self._environ = environ

    def release_index_url(self, channel: str) -> str:
        api_base = self._config.api_base.rstrip("/")
        return (
            f"{api_base}/repos/{self._config.owner}/{self._config.repository}"
            f"/releases/tags/{quote(channel, safe='')}"
        )

    def base_url(self, tag: str) -> str:
        download_base = self._config.download_base.rstrip("/")
        return (
            f"{download_base}/{self._config.owner}/{self._config.repository}"
            f"/releases/download/{tag}/"
        )

    def resolve(self, channel: str) -> Release:
        """
        Resolve a channel to a Release.

        Args:
            channel: "stable", "nightly" or any upstream tag.

        Returns:
            The resolved Release.

        Raises:
            ReleaseNotFoundError: The upstream has no release under this tag.
            NetworkError: Transport failure, timeout, unexpected status, or a
                response without a usable tag.
        """
        if not channel.strip():
            raise ReleaseNotFoundError("Channel name must not be empty")

        url = self.release_index_url(channel)
        request = Request(url, headers=api_headers(self._environ), method="GET")

        _logger.debug("Querying release index", extra={"channel": channel, "url": url})

        try:
            with self._opener(request, timeout=self._config.http_timeout_seconds) as response:
                body = response.read()
        except HTTPError as err:
            if err.code == 404:
                raise ReleaseNotFoundError(
                    f"No upstream release tagged '{channel}' in "
                    f"{self._config.owner}/{self._config.repository}"
                ) from err
            raise NetworkError(f"Release index returned HTTP {err.code} for '{channel}'") from err
        except TRANSPORT_ERRORS + PROTOCOL_ERRORS as err:
            raise NetworkError(f"Release index query failed for '{channel}': {err}") from err

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as err:
            raise NetworkError(f"Release index returned an unreadable body for '{channel}'") from err

        tag = payload.get("tag_name") if isinstance(payload, dict) else None
        if not isinstance(tag, str) or not tag:
            raise NetworkError(f"Release index response for '{channel}' has no tag_name")

        release = Release(channel=channel, tag=tag, base_url=self.base_url(tag))
        _logger.info(
            "Release resolved",
            extra={"channel": channel, "tag": tag, "base_url": release.base_url},
        )
        return release
