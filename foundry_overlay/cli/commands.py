# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the foundry-overlay CLI.

Each handler loads config, does its work, and turns any failure into exactly
one error log line plus an exit code. No print() calls; everything goes
through the structured logger.
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

from foundry_overlay.cli.exit_codes import (
    CONFIG_ERROR,
    RUNTIME_ERROR,
    SUCCESS,
    USER_ERROR,
    VALIDATION_ERROR,
)
from foundry_overlay.config.exceptions import ConfigError
from foundry_overlay.config.loader import load_config
from foundry_overlay.config.schema import FoundryOverlayConfig
from foundry_overlay.logging.logger import configure_logging, get_logger
from foundry_overlay.sync.errors import (
    AttestationError,
    DownloadError,
    MergeConflictError,
    NetworkError,
    ReleaseNotFoundError,
    SyncError,
    UnknownChannelError,
    UnknownPlatformError,
)

_EXIT_CODES: tuple[tuple[type[SyncError], int], ...] = (
    (ReleaseNotFoundError, USER_ERROR),
    (UnknownChannelError, USER_ERROR),
    (UnknownPlatformError, CONFIG_ERROR),
    (AttestationError, VALIDATION_ERROR),
    (MergeConflictError, VALIDATION_ERROR),
    (NetworkError, RUNTIME_ERROR),
    (DownloadError, RUNTIME_ERROR),
)


def exit_code_for(err: SyncError) -> int:
    """Map a pipeline failure to the CLI exit code."""
    for error_type, code in _EXIT_CODES:
        if isinstance(err, error_type):
            return code
    return RUNTIME_ERROR


def _load(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, Optional[FoundryOverlayConfig], logging.Logger]:
    """
    The shared setup every command needs: logger and config.

    Returns (exit_code, config, logger). If exit_code is not SUCCESS the
    caller should return it immediately.
    """
    configure_logging(args.log_level or "INFO")
    logger = get_logger(f"foundry_overlay.cli.{command_name}")

    try:
        config = load_config(Path(args.config) if args.config is not None else None)
    except ConfigError as err:
        logger.error(
            "Configuration error",
            extra={"command": command_name, "error": str(err)},
        )
        return CONFIG_ERROR, None, logger

    log_file = config.global_config.log_file
    configure_logging(
        args.log_level or config.global_config.log_level,
        Path(log_file) if log_file is not None else None,
    )

    return SUCCESS, config, logger


def _manifest_path(args: argparse.Namespace, config: FoundryOverlayConfig) -> Path:
    if args.manifest is not None:
        return Path(args.manifest)
    return Path(config.sync.manifest_path)


def _report_failure(logger: logging.Logger, command_name: str, channel: str, err: SyncError) -> int:
    logger.error(
        f"{command_name.capitalize()} failed",
        extra={
            "command": command_name,
            "channel": channel,
            "error_kind": type(err).__name__,
            "error": str(err),
        },
    )
    return exit_code_for(err)


def handle_update(args: argparse.Namespace) -> int:
    """Resolve a channel, verify and hash its archives, and rewrite the manifest."""
    exit_code, config, logger = _load(args, "update")
    if exit_code != SUCCESS or config is None:
        return exit_code

    from foundry_overlay.sync.pipeline import SyncPipeline

    channel = args.channel or "stable"
    manifest_path = _manifest_path(args, config)

    try:
        logger.info(
            "Starting update",
            extra={
                "command": "update",
                "channel": channel,
                "manifest": str(manifest_path),
                "dry_run": args.dry_run,
                "verify_attestations": config.sync.verify_attestations,
            },
        )
        pipeline = SyncPipeline(config.sync, manifest_path=manifest_path)
        result = pipeline.run(channel, dry_run=args.dry_run)
    except SyncError as err:
        return _report_failure(logger, "update", channel, err)
    except Exception as err:
        logger.error(
            "Runtime error",
            extra={"command": "update", "channel": channel, "error": str(err)},
            exc_info=True,
        )
        return RUNTIME_ERROR

    logger.info(
        "Update complete",
        extra={
            "command": "update",
            "channel": channel,
            "tag": result.entry.tag,
            "manifest_written": result.manifest_written,
        },
    )
    return SUCCESS


def _selected_entry(args: argparse.Namespace, config: FoundryOverlayConfig):
    from foundry_overlay.sync.manifest import load_manifest, select_entry, selected_channel

    channel = args.channel or selected_channel()
    snapshot = load_manifest(_manifest_path(args, config))
    return channel, select_entry(snapshot.data, channel)


def handle_verify(args: argparse.Namespace) -> int:
    """Re-download a channel's archives and compare them with the manifest digests."""
    exit_code, config, logger = _load(args, "verify")
    if exit_code != SUCCESS or config is None:
        return exit_code

    from foundry_overlay.sync.fetcher import ArchiveFetcher
    from foundry_overlay.sync.integrity import verify_entry

    channel = args.channel or ""
    try:
        channel, entry = _selected_entry(args, config)
        logger.info("Starting verification", extra={"command": "verify", "channel": channel})
        report = verify_entry(
            entry,
            ArchiveFetcher(
                timeout_seconds=config.sync.http_timeout_seconds,
                deadline_seconds=config.sync.download_deadline_seconds,
            ),
        )
    except SyncError as err:
        return _report_failure(logger, "verify", channel, err)
    except Exception as err:
        logger.error("Verification failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR

    if not report.is_valid:
        logger.error(
            "Integrity check failed",
            extra={"channel": channel, "mismatches": report.mismatches},
        )
        return VALIDATION_ERROR

    logger.info(
        "Integrity check passed",
        extra={"channel": channel, "checked": report.checked},
    )
    return SUCCESS


def handle_show(args: argparse.Namespace) -> int:
    """Log the manifest entry the packaging step would build from."""
    exit_code, config, logger = _load(args, "show")
    if exit_code != SUCCESS or config is None:
        return exit_code

    channel = args.channel or ""
    try:
        channel, entry = _selected_entry(args, config)
    except SyncError as err:
        return _report_failure(logger, "show", channel, err)

    logger.info("Manifest entry", extra={"channel": channel, "entry": entry.to_dict()})
    return SUCCESS
