"""Sync commands: signin, sync now/pull/status, sync link-local, sync unlink."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from ._common import (
    VAULT_HOME,
    attach_sync,
    build_context,
    console,
    finish,
    open_vault,
    print_sync_result,
)
from ..config import BackendType, load_config, save_config
from ..errors import (
    InvalidCredentials,
    PassphraseConfirmationRequired,
    PassphraseMismatch,
    RemoteError,
    WrongPassphrase,
)
from ..models import RemoteSession
from ..sync.signin import sign_in_remote

PASSPHRASE_ENV = "VAULTSYNC_PASSPHRASE"


def register_sync_commands(main: click.Group) -> None:
    """Register the sync group and the remote sign-in command."""

    @main.command()
    @click.option("--account", "-a", default=None, help="Remote identity (email).")
    @click.option("--access-token", envvar="VAULTSYNC_ACCESS_TOKEN", default=None)
    @click.option("--refresh-token", envvar="VAULTSYNC_REFRESH_TOKEN", default=None)
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    @click.option("--confirm", "confirm", envvar="VAULTSYNC_CONFIRM", default=None, help="Master key again.")
    def signin(
        account: Optional[str],
        access_token: Optional[str],
        refresh_token: Optional[str],
        home: str,
        passphrase: Optional[str],
        confirm: Optional[str],
    ):
        """Sign in with a remote identity and link the account to it."""
        ctx = build_context(home)
        if ctx.config.backend == BackendType.NONE:
            console.print(
                "[bold red]No remote configured.[/] "
                "Run [bold]vaultsync sync link-local PATH[/] or set backend in config.yaml."
            )
            sys.exit(1)

        remote_session = RemoteSession(
            access_token=access_token,
            refresh_token=refresh_token,
            remote_email=account,
        )
        reconciler = attach_sync(ctx, remote_session)
        if passphrase is None:
            passphrase = click.prompt("Master key", hide_input=True)

        try:
            try:
                result = sign_in_remote(
                    ctx.session, reconciler, passphrase, remote_session,
                    account_id=account, confirm=confirm,
                )
            except PassphraseConfirmationRequired:
                confirm = click.prompt("Confirm master key", hide_input=True)
                result = sign_in_remote(
                    ctx.session, reconciler, passphrase, remote_session,
                    account_id=account, confirm=confirm,
                )
        except (InvalidCredentials, PassphraseMismatch, WrongPassphrase) as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        except RemoteError as exc:
            console.print(f"[bold red]Remote error:[/] {exc}")
            sys.exit(1)

        labels = {"A": "existing local account", "B": "restored from remote", "C": "new account"}
        console.print(
            f"\n  [green]Signed in[/] [cyan]{result.account_id}[/] "
            f"({labels[result.scenario.value]})"
        )
        print_sync_result(result.sync)
        console.print(f"  [dim]{reconciler.status_summary()}[/]\n")
        finish(ctx, report=False)

    @main.group()
    def sync():
        """Reconcile the open account with its remote copy."""

    @sync.command("now")
    @click.option("--force", is_flag=True, help="Compare full contents, not just metadata.")
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    def sync_now(force: bool, account: Optional[str], home: str, passphrase: Optional[str]):
        """Push local changes, reconciling first if the remote moved."""
        ctx = open_vault(home, account, passphrase)
        if not ctx.reconciler.active:
            console.print("  [yellow]Local only:[/] sign in to a remote first.")
            ctx.session.close()
            return
        try:
            print_sync_result(ctx.reconciler.sync(force=force))
        except WrongPassphrase as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        ctx.session.close()

    @sync.command("pull")
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    def sync_pull(account: Optional[str], home: str, passphrase: Optional[str]):
        """Fetch the remote copy and compare it with local data."""
        ctx = open_vault(home, account, passphrase)
        if not ctx.reconciler.active:
            console.print("  [yellow]Local only:[/] sign in to a remote first.")
            ctx.session.close()
            return
        try:
            print_sync_result(ctx.reconciler.pull())
        except WrongPassphrase as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        ctx.session.close()

    @sync.command("status")
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    def sync_status(account: Optional[str], home: str, passphrase: Optional[str]):
        """One-line sync state of the account."""
        ctx = open_vault(home, account, passphrase)
        console.print(f"\n  {ctx.reconciler.status_summary()}\n")
        ctx.session.close()

    @sync.command("unlink")
    @click.option("--account", "-a", default=None, help="Account id (default: active).")
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    @click.option("--passphrase", envvar=PASSPHRASE_ENV, default=None, help="Master key.")
    def sync_unlink(account: Optional[str], home: str, passphrase: Optional[str]):
        """Switch the account to local-only mode. The remote copy is kept."""
        ctx = open_vault(home, account, passphrase)
        ctx.reconciler.cancel_pending()
        ctx.session.unlink_remote()
        console.print(f"\n  [yellow]Local only:[/] [cyan]{ctx.session.account_id}[/]\n")
        ctx.session.close()

    @sync.command("link-local")
    @click.argument("path", type=click.Path())
    @click.option("--home", default=VAULT_HOME, help="Vault home directory.", type=click.Path())
    def link_local(path: str, home: str):
        """Use a directory as the remote (shared folder, mounted drive)."""
        home_path = Path(home).expanduser()
        target = Path(path).expanduser().resolve()
        target.mkdir(parents=True, exist_ok=True)
        config = load_config(home_path)
        config.backend = BackendType.LOCAL
        config.local_remote_path = str(target)
        written = save_config(home_path, config)
        console.print(f"\n  [green]Remote set to[/] {target}")
        console.print(f"  [dim]Config: {written}[/]\n")
