"""
vaultsync CLI: the encrypted credential store command line.

The main Click group is defined here and all subcommands are
registered via register functions, one module per command group.

Entry point: vaultsync.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="vaultsync")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr.")
def main(verbose: bool):
    """vaultsync: encrypted credentials, synced to one remote file."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .account import register_account_commands
from .records import register_record_commands
from .sync_cmd import register_sync_commands
from .log_cmd import register_log_commands

register_account_commands(main)
register_record_commands(main)
register_sync_commands(main)
register_log_commands(main)
