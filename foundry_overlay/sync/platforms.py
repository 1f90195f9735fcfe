# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Platform keys and the upstream archive naming scheme.

Upstream publishes one archive per platform:

    <base_url>foundry_<tag>_<archive name>.tar.gz

plus a single manpages archive shared by all platforms:

    <base_url>foundry_man_<tag>.tar.gz

aarch64-linux has an archive name but is not part of DEFAULT_PLATFORMS. The
packaging step only builds for the default set, and adding a key changes the
shape of every manifest entry.
"""

from foundry_overlay.sync.errors import UnknownPlatformError

PLATFORM_ARCHIVE_NAMES: dict[str, str] = {
    "aarch64-darwin": "darwin_arm64",
    "x86_64-darwin": "darwin_amd64",
    "x86_64-linux": "linux_amd64",
    "aarch64-linux": "linux_arm64",
}

DEFAULT_PLATFORMS: tuple[str, ...] = ("aarch64-darwin", "x86_64-darwin", "x86_64-linux")


def platform_archive_name(platform: str) -> str:
    """
    Map a platform key to its upstream archive name fragment.

    Raises:
        UnknownPlatformError: If the key is not in PLATFORM_ARCHIVE_NAMES.
    """
    try:
        return PLATFORM_ARCHIVE_NAMES[platform]
    except KeyError:
        known = ", ".join(sorted(PLATFORM_ARCHIVE_NAMES))
        raise UnknownPlatformError(
            f"No upstream archive name for platform '{platform}'. Known platforms: {known}"
        ) from None


def archive_filename(tag: str, platform: str) -> str:
    return f"foundry_{tag}_{platform_archive_name(platform)}.tar.gz"


def manpages_filename(tag: str) -> str:
    return f"foundry_man_{tag}.tar.gz"
