# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
HTTP plumbing shared by the release client and the archive fetcher.

Everything goes through an injectable `opener` with the signature of
urllib.request.urlopen, so tests can hand in canned responses instead of
touching the network.
"""

import os
import ssl
from http.client import HTTPException
from typing import Any, Callable, Mapping, Optional
from urllib.error import URLError

from foundry_overlay import __version__

Opener = Callable[..., Any]

USER_AGENT = f"foundry-overlay/{__version__}"

TOKEN_ENV_VARS: tuple[str, ...] = ("GH_TOKEN", "GITHUB_TOKEN")

# Errors that mean "the transport broke", as opposed to "the server said no".
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    URLError,
    TimeoutError,
    ConnectionError,
    ssl.SSLError,
)

# Raised by http.client when a body ends short of its announced length.
PROTOCOL_ERRORS: tuple[type[BaseException], ...] = (HTTPException,)


def api_headers(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """
    Headers for release-index API queries.

    A token from GH_TOKEN or GITHUB_TOKEN is attached when present; anonymous
    requests work too but hit GitHub's lower rate limit.
    """
    env = os.environ if environ is None else environ
    headers: dict[str, str] = {
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
        "X-GitHub-Api-Version": "2022-11-28",
    }
    for name in TOKEN_ENV_VARS:
        token = env.get(name, "").strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
            break
    return headers


def download_headers() -> dict[str, str]:
    # No token here: release downloads redirect to a storage host that
    # rejects foreign Authorization headers.
    return {
        "Accept": "application/octet-stream",
        "User-Agent": USER_AGENT,
    }


def content_length(response: Any) -> Optional[int]:
    """Announced body size of a response, or None when absent or garbled."""
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    raw = headers.get("Content-Length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None
