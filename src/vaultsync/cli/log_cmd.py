"""Log command: show the operation log."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ._common import VAULT_HOME, console
from ..audit import read_events


def register_log_commands(main: click.Group) -> None:
    """Register the log command on the main CLI group."""

    @main.command("log")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--limit", "-n", default=20, help="Number of entries to show (0 = all).")
    @click.option("--account", "-a", default=None, help="Only events for this account.")
    def log_cmd(home: str, limit: int, account: Optional[str]):
        """Show recent saves, loads and sync events."""
        events = read_events(Path(home).expanduser())
        if account:
            events = [e for e in events if e.account == account]
        if limit > 0:
            events = events[-limit:]

        if not events:
            console.print("\n  [dim]No events recorded.[/]\n")
            return

        colors = {
            "SYNC_ERROR": "red",
            "SYNC_CONFLICT": "yellow",
            "SYNC_UPLOAD": "green",
            "SYNC_DOWNLOAD": "green",
            "UNPARSEABLE": "red",
        }
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim")
        table.add_column("Event")
        table.add_column("Account", style="cyan")
        table.add_column("Detail")
        for entry in events:
            color = colors.get(entry.event_type, "white")
            table.add_row(
                entry.timestamp[:19].replace("T", " "),
                f"[{color}]{entry.event_type}[/]",
                entry.account or "-",
                entry.detail,
            )
        console.print()
        console.print(table)
        console.print()
