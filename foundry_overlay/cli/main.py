# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for foundry-overlay.

Usage:
    foundry-overlay update [channel]      # default channel: stable
    foundry-overlay verify [channel]      # default: $FOUNDRY_VERSION or stable
    foundry-overlay show [channel]
    foundry-overlay update nightly --config configs/sync.yaml --dry-run

Set FOUNDRY_SKIP_ATTESTATION=1 to update a channel whose release predates
upstream attestations. The update logs a warning for every such run.
"""

import argparse
import sys
from typing import Optional, Sequence

from foundry_overlay.cli.commands import handle_show, handle_update, handle_verify
from foundry_overlay.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    These get inherited by every subcommand. add_help=False so help text
    doesn't collide between parent and subcommand parsers.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level (overrides global.log_level).",
    )
    parent.add_argument(
        "--manifest",
        type=str,
        default=None,
        help="Manifest file to read and write (overrides sync.manifest_path).",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Do all the work but leave the manifest untouched.",
    )
    return parent


def build_parser() -> argparse.ArgumentParser:
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="foundry-overlay",
        description="Keep a verified manifest of upstream Foundry release archives.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")

    commands = [
        ("update", "Resolve a channel and rewrite its manifest entry.", handle_update),
        ("verify", "Re-download a channel's archives and check their digests.", handle_verify),
        ("show", "Show the manifest entry for a channel.", handle_show),
    ]
    for name, help_text, handler in commands:
        parser = subparsers.add_parser(name, parents=[parent], help=help_text)
        parser.add_argument(
            "channel",
            nargs="?",
            default=None,
            help="stable, nightly, or a release tag.",
        )
        parser.set_defaults(func=handler)

    return root_parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

    If no subcommand is given, we show help and exit with USER_ERROR.
    """
    root_parser = build_parser()
    args = root_parser.parse_args(argv)

    if getattr(args, "func", None) is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
