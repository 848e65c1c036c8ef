"""Account commands: init, unlock, status, wipe."""

from __future__ import annotations

import sys
from typing import Optional

import click
from rich.panel import Panel

from ._common import (
    VAULT_HOME,
    build_context,
    console,
    finish,
    open_or_create,
    open_vault,
    print_sync_result,
    resolve_account,
)
from ..crypto import short
from ..errors import AccountNotFound, LocalCorruption, WrongPassphrase

PASSPHRASE_ENV = "VAULTSYNC_PASSPHRASE"


def register_account_commands(main: click.Group) -> None:
    """Register account lifecycle commands on the main CLI group."""

    @main.command()
    @click.argument("account")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    @click.option("--confirm", "confirm", envvar="VAULTSYNC_CONFIRM", default=None, help="Master key again.")
    def init(account: str, home: str, passphrase: Optional[str], confirm: Optional[str]):
        """Create a new local account."""
        ctx = build_context(home)
        if ctx.store.exists(account):
            console.print(f"[bold red]Account[/] [cyan]{account}[/] [bold red]already exists.[/]")
            sys.exit(1)
        if passphrase is None:
            passphrase = click.prompt("Master key", hide_input=True)
        open_or_create(ctx, account, passphrase, confirm)
        vault = ctx.session.vault
        console.print(
            f"\n  [green]Created[/] [cyan]{account}[/] with {len(vault.labels)} default labels.\n"
        )
        ctx.session.close()

    @main.command()
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    def unlock(account: Optional[str], home: str, passphrase: Optional[str]):
        """Unlock an account and reconcile with the remote."""
        ctx = open_vault(home, account, passphrase)
        vault = ctx.session.vault
        console.print(
            f"\n  [green]Unlocked[/] [cyan]{ctx.session.account_id}[/] "
            f"v{vault.version}: {len(vault.records)} records, {len(vault.labels)} labels"
        )
        if ctx.reconciler.active:
            try:
                print_sync_result(ctx.reconciler.pull())
            except WrongPassphrase as exc:
                console.print(f"[bold red]{exc}[/]")
                sys.exit(1)
        console.print(f"  [dim]{ctx.reconciler.status_summary()}[/]\n")
        finish(ctx, report=False)

    @main.command()
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    def status(account: Optional[str], home: str):
        """Show local metadata for an account (no master key needed)."""
        ctx = build_context(home)
        account = resolve_account(ctx, account)
        try:
            meta = ctx.store.read_meta(account)
        except (AccountNotFound, LocalCorruption) as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)

        remote = ctx.config.backend.value
        if ctx.config.local_remote_path and ctx.config.backend.value == "local":
            remote += f" ({ctx.config.local_remote_path})"
        console.print()
        console.print(
            Panel(
                f"Account: [cyan]{meta.account_id}[/]\n"
                f"Version: [bold]{meta.version}[/]\n"
                f"Fingerprint: {short(meta.fingerprint)}\n"
                f"Backend: {remote}\n"
                f"Last remote marker: {meta.last_remote_modified or '[dim]never synced[/]'}\n"
                f"Last remote fingerprint: {short(meta.last_remote_fingerprint)}",
                title="vaultsync",
                border_style="bright_blue",
            )
        )
        others = [a for a in ctx.store.list_accounts() if a != account]
        if others:
            console.print(f"  [dim]Other accounts: {', '.join(others)}[/]")
        console.print()

    @main.command()
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    @click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
    def wipe(account: Optional[str], home: str, passphrase: Optional[str], yes: bool):
        """Delete all local data of an account. The remote copy is kept."""
        ctx = open_vault(home, account, passphrase)
        account_id = ctx.session.account_id
        if not yes and not click.confirm(f"Delete local data for {account_id}?"):
            ctx.session.close()
            return
        ctx.session.wipe()
        console.print(f"\n  [yellow]Wiped[/] local data for [cyan]{account_id}[/].\n")
