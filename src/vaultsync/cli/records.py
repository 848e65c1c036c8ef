"""Record and label commands: add, list, edit, rm, label."""

from __future__ import annotations

import sys

import click
from rich.table import Table

from ._common import VAULT_HOME, console, finish, open_vault
from ..errors import VaultSyncError

PASSPHRASE_ENV = "VAULTSYNC_PASSPHRASE"


def _vault_options(func):
    func = click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")(func)
    func = click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())(func)
    func = click.option("--account", "-a", default=None, help="Account id (default: active).")(func)
    return func


def _position(ctx, number: int) -> int:
    """Turn a 1-based record number into an index, or exit."""
    index = number - 1
    if index < 0 or index >= len(ctx.session.vault.records):
        console.print(f"[bold red]No record #{number}.[/]")
        ctx.session.close()
        sys.exit(1)
    return index


def _confirm_delete(ctx, what: str, yes: bool) -> bool:
    """Ask before deleting unless ``--yes`` or the vault's delete_without_confirm flag."""
    if yes or ctx.session.vault.ui_flags.get("delete_without_confirm", False):
        return True
    if click.confirm(f"Delete {what}?", default=False):
        return True
    console.print("[yellow]Aborted.[/]")
    ctx.session.close()
    return False


def register_record_commands(main: click.Group) -> None:
    """Register record and label commands on the main CLI group."""

    @main.command()
    @click.argument("service")
    @click.option("--login", "-l", default="", help="Login / username.")
    @click.option("--secret", "-s", default=None, help="Secret (prompted when omitted).")
    @click.option("--category", "-c", default="", help="Category label.")
    @click.option("--note", "-n", default="", help="Free-text note.")
    @_vault_options
    def add(service, login, secret, category, note, account, home, passphrase):
        """Add a credential record."""
        ctx = open_vault(home, account, passphrase)
        if secret is None:
            secret = click.prompt("Secret", hide_input=True, default="", show_default=False)
        try:
            ctx.editor.create_record(
                service=service, login=login, secret=secret, category=category, note=note,
            )
        except VaultSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        console.print(f"\n  [green]Added[/] [cyan]{service}[/] (#{len(ctx.session.vault.records)})")
        finish(ctx)

    @main.command("list")
    @click.option("--show", is_flag=True, help="Show secrets in clear text.")
    @click.option("--search", "-q", "search", default="", help="Text to look for in any field.")
    @click.option("--label", "labels", multiple=True, help="Only records in this category (repeatable).")
    @_vault_options
    def list_records(show, search, labels, account, home, passphrase):
        """List records of the vault."""
        ctx = open_vault(home, account, passphrase)
        vault = ctx.session.vault
        matches = ctx.editor.search(search, labels)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("#", style="dim", justify="right")
        table.add_column("Service", style="bold")
        table.add_column("Login", style="cyan")
        table.add_column("Secret")
        table.add_column("Category", style="magenta")
        table.add_column("Note", style="dim")

        for index in matches:
            record = vault.records[index]
            visible = show or vault.visibility.get(str(index), False)
            secret = record.secret if visible else ("*" * 8 if record.secret else "")
            table.add_row(
                str(index + 1), record.service, record.login, secret, record.category, record.note,
            )

        console.print()
        if matches:
            console.print(table)
        else:
            console.print("  [dim]No records.[/]")
        console.print(f"\n  [dim]Labels: {', '.join(vault.labels) or 'none'}[/]\n")
        ctx.session.close()

    @main.command()
    @click.argument("number", type=int)
    @click.option("--service", default=None)
    @click.option("--login", "-l", default=None)
    @click.option("--secret", "-s", default=None)
    @click.option("--category", "-c", default=None)
    @click.option("--note", "-n", default=None)
    @_vault_options
    def edit(number, service, login, secret, category, note, account, home, passphrase):
        """Change fields of record NUMBER."""
        ctx = open_vault(home, account, passphrase)
        index = _position(ctx, number)
        changes = {
            name: value
            for name, value in (
                ("service", service),
                ("login", login),
                ("secret", secret),
                ("category", category),
                ("note", note),
            )
            if value is not None
        }
        if not changes:
            console.print("[yellow]Nothing to change.[/]")
            ctx.session.close()
            return
        ctx.editor.update_record(index, **changes)
        console.print(f"\n  [green]Updated[/] #{number}: {', '.join(sorted(changes))}")
        finish(ctx)

    @main.command()
    @click.argument("number", type=int)
    @click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
    @_vault_options
    def rm(number, yes, account, home, passphrase):
        """Delete record NUMBER."""
        ctx = open_vault(home, account, passphrase)
        index = _position(ctx, number)
        service = ctx.session.vault.records[index].service or "(empty)"
        if not _confirm_delete(ctx, f"record #{number} {service}", yes):
            return
        try:
            record = ctx.editor.delete_record(index)
        except VaultSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        console.print(f"\n  [yellow]Deleted[/] #{number} [cyan]{record.service or '(empty)'}[/]")
        finish(ctx)

    @main.command()
    @click.argument("number", type=int)
    @_vault_options
    def reveal(number, account, home, passphrase):
        """Toggle whether record NUMBER shows its secret in listings."""
        ctx = open_vault(home, account, passphrase)
        index = _position(ctx, number)
        shown = ctx.editor.toggle_visibility(index)
        console.print(f"\n  #{number} secret {'shown' if shown else 'hidden'} in listings")
        finish(ctx)

    @main.group()
    def label():
        """Manage category labels."""

    @label.command("add")
    @click.argument("name")
    @_vault_options
    def label_add(name, account, home, passphrase):
        """Add a category label."""
        ctx = open_vault(home, account, passphrase)
        try:
            added = ctx.editor.add_label(name)
        except ValueError as exc:
            console.print(f"[bold red]{exc}[/]")
            ctx.session.close()
            sys.exit(1)
        except VaultSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        console.print(f"\n  [green]Added label[/] [magenta]{added}[/]")
        finish(ctx)

    @label.command("rm")
    @click.argument("name")
    @click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
    @_vault_options
    def label_rm(name, yes, account, home, passphrase):
        """Remove a category label (records keep their category text)."""
        ctx = open_vault(home, account, passphrase)
        if not _confirm_delete(ctx, f"label {name}", yes):
            return
        try:
            removed = ctx.editor.delete_label(name)
        except ValueError as exc:
            console.print(f"[bold red]{exc}[/]")
            ctx.session.close()
            sys.exit(1)
        except VaultSyncError as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        console.print(f"\n  [yellow]Removed label[/] [magenta]{removed}[/]")
        finish(ctx)

    @main.command("set")
    @click.argument("flag")
    @click.argument("value", type=bool)
    @_vault_options
    def set_flag(flag, value, account, home, passphrase):
        """Set a preference flag, e.g. delete_without_confirm true."""
        ctx = open_vault(home, account, passphrase)
        ctx.editor.set_flag(flag, value)
        console.print(f"\n  {flag} = {value}")
        finish(ctx)
