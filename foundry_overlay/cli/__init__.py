# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Command-line interface for foundry-overlay.

One argparse entry point with update, verify and show subcommands. Handlers
return exit codes from exit_codes.py; they never print, everything goes
through the JSON logger.
"""
