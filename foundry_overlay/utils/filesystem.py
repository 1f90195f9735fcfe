# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Safe filesystem operations for foundry-overlay.

The manifest is the only durable state this project owns, so every write to it
goes through here:
  - writes are atomic (no partial files on failure)
  - the previous version is kept as a backup before it is replaced

Atomic writes work by writing to a temporary file in the same directory as
the target, then renaming. Rename on the same filesystem is atomic on POSIX,
so a concurrent reader sees either the old file or the new one.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

_TEMP_PREFIX = ".foundry_overlay_tmp_"


def atomic_write(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write text to a file atomically.

    Args:
        target_path: Where the final file should end up.
        content: The string content to write.
        encoding: Text encoding to use.

    Raises:
        OSError: If the write or rename fails.
    """
    atomic_write_bytes(target_path, content.encode(encoding))


def atomic_write_bytes(target_path: Path, data: bytes) -> None:
    """
    Write binary data to a file atomically.

    The temp file lives in the target's directory so the final rename never
    crosses a filesystem boundary. If anything fails before the rename, the
    target is untouched and the temp file is removed.

    Args:
        target_path: Where the final file should end up.
        data: The raw bytes to write.

    Raises:
        OSError: If the write or rename fails.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    # delete=False because we need the file to survive closing so we can rename it.
    temp_fd = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=str(target_path.parent),
        prefix=_TEMP_PREFIX,
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        temp_fd.write(data)
        temp_fd.flush()
        os.fsync(temp_fd.fileno())
        temp_fd.close()
        os.replace(temp_path, target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def backup_file(source_path: Path, suffix: str = ".bak") -> Optional[Path]:
    """
    Copy a file next to itself with the given suffix, atomically.

    Returns the backup path, or None when there was nothing to back up.
    An existing backup is replaced.
    """
    if not source_path.is_file():
        return None
    backup_path = source_path.with_name(source_path.name + suffix)
    atomic_write_bytes(backup_path, source_path.read_bytes())
    return backup_path

