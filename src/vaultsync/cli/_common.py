"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the context builder that wires
store, session, reconciler and editor together, and the interactive
conflict chooser.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .. import VAULT_HOME
from ..config import BackendType, VaultSyncConfig, load_config
from ..editor import VaultEditor
from ..errors import (
    AccountNotFound,
    InvalidCredentials,
    LocalCorruption,
    PassphraseConfirmationRequired,
    PassphraseMismatch,
    WrongPassphrase,
)
from ..models import RemoteSession
from ..session import SessionContext
from ..store import AccountStore
from ..sync.backends import create_backend
from ..sync.credentials import CredentialProvider, GoogleCredentials, NullCredentials
from ..sync.engine import SyncReconciler
from ..sync.models import ConflictReport, SyncChoice, SyncOutcome, SyncResult

console = Console()
logger = logging.getLogger("vaultsync.cli")


@dataclass
class VaultContext:
    """Everything a command needs, built from one home directory."""

    home: Path
    config: VaultSyncConfig
    store: AccountStore
    session: SessionContext
    reconciler: Optional[SyncReconciler] = None
    editor: Optional[VaultEditor] = None


def human_size(size: int) -> str:
    return f"{size / 1024:.2f} KB"


def prompt_conflict(report: ConflictReport) -> SyncChoice:
    """Show both sides of a conflict and ask which one to keep."""
    table = Table(
        title=f"Sync conflict: {report.kind.value.replace('_', ' ')}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("")
    table.add_column("Local", style="cyan")
    table.add_column("Remote", style="magenta")
    table.add_row("Version", str(report.local.version), str(report.remote.version))
    table.add_row("Records", str(report.local.records), str(report.remote.records))
    table.add_row("Labels", str(report.local.labels), str(report.remote.labels))
    table.add_row(
        "Size",
        human_size(report.local.size_bytes),
        human_size(report.remote.size_bytes),
    )
    table.add_row(
        "Modified",
        f"{report.local.modified_at:%Y-%m-%d %H:%M}" if report.local.modified_at else "-",
        f"{report.remote.modified_at:%Y-%m-%d %H:%M}" if report.remote.modified_at else "-",
    )

    console.print()
    console.print(table)
    console.print(
        "  [bold]upload[/]   overwrite the remote with this vault\n"
        "  [bold]download[/] merge the remote into this vault\n"
        "  [bold]cancel[/]   stay local-only for now"
    )
    answer = click.prompt(
        "Choice",
        type=click.Choice([choice.value for choice in SyncChoice]),
        default=SyncChoice.CANCEL.value,
    )
    return SyncChoice(answer)


def build_context(home: str) -> VaultContext:
    home_path = Path(home).expanduser()
    config = load_config(home_path)
    store = AccountStore(
        home_path,
        save_debounce=config.save_debounce_seconds,
        audit_max_entries=config.audit_max_entries,
    )
    return VaultContext(
        home=home_path,
        config=config,
        store=store,
        session=SessionContext(store),
    )


def make_credentials(
    ctx: VaultContext, remote_session: Optional[RemoteSession]
) -> CredentialProvider:
    """Credential provider for the configured backend."""
    if ctx.config.backend != BackendType.GDRIVE:
        email = remote_session.remote_email if remote_session else None
        return NullCredentials(email)

    def persist_tokens(_: RemoteSession) -> None:
        if ctx.session.unlocked:
            ctx.session.persist()

    return GoogleCredentials(
        remote_session or RemoteSession(),
        client_id=ctx.config.google_client_id,
        client_secret=ctx.config.google_client_secret,
        timeout=ctx.config.request_timeout,
        on_tokens_changed=persist_tokens,
        max_checks=ctx.config.reauth_max_checks,
        poll_interval=ctx.config.reauth_poll_interval,
    )


def attach_sync(
    ctx: VaultContext, remote_session: Optional[RemoteSession] = None
) -> SyncReconciler:
    """Build the reconciler and editor for ``ctx``."""
    if remote_session is None and ctx.session.vault is not None:
        remote_session = ctx.session.vault.remote_session
    credentials = make_credentials(ctx, remote_session)
    remote = None
    if ctx.config.backend != BackendType.NONE:
        remote = create_backend(ctx.config, credentials)
    ctx.reconciler = SyncReconciler(
        ctx.session,
        remote,
        credentials,
        chooser=prompt_conflict,
        config=ctx.config,
    )
    ctx.editor = VaultEditor(ctx.session, ctx.reconciler)
    return ctx.reconciler


def resolve_account(ctx: VaultContext, account: Optional[str]) -> str:
    account = account or ctx.store.get_active()
    if not account:
        console.print("[bold red]No active account.[/] Run [bold]vaultsync init[/] first.")
        sys.exit(1)
    return account


def open_vault(home: str, account: Optional[str], passphrase: Optional[str]) -> VaultContext:
    """Unlock an existing account and wire up sync, or exit with a message."""
    ctx = build_context(home)
    account = resolve_account(ctx, account)
    if not ctx.store.exists(account):
        console.print(f"[bold red]No local data for[/] [cyan]{account}[/].")
        sys.exit(1)
    if passphrase is None:
        passphrase = click.prompt("Master key", hide_input=True)
    try:
        ctx.session.open(account, passphrase)
    except (WrongPassphrase, InvalidCredentials) as exc:
        console.print(f"[bold red]{exc}[/]")
        sys.exit(1)
    except (LocalCorruption, AccountNotFound) as exc:
        console.print(f"[bold red]Local data problem:[/] {exc}")
        sys.exit(1)
    attach_sync(ctx)
    return ctx


def open_or_create(
    ctx: VaultContext, account: str, passphrase: str, confirm: Optional[str]
) -> None:
    """Open ``account``, asking for confirmation when it is new."""
    try:
        ctx.session.open(account, passphrase, confirm=confirm)
    except PassphraseConfirmationRequired:
        confirm = click.prompt("Confirm master key", hide_input=True)
        try:
            ctx.session.open(account, passphrase, confirm=confirm)
        except PassphraseMismatch as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
    except (PassphraseMismatch, InvalidCredentials, WrongPassphrase) as exc:
        console.print(f"[bold red]{exc}[/]")
        sys.exit(1)


def print_sync_result(result: Optional[SyncResult]) -> None:
    if result is None:
        return
    colors = {
        SyncOutcome.UP_TO_DATE: "green",
        SyncOutcome.UPLOADED: "green",
        SyncOutcome.DOWNLOADED: "green",
        SyncOutcome.CANCELLED: "yellow",
        SyncOutcome.SKIPPED: "dim",
        SyncOutcome.FAILED: "red",
    }
    color = colors.get(result.outcome, "white")
    console.print(f"  Sync: [{color}]{result.outcome.value.replace('_', ' ')}[/] {result.message}")


def finish(ctx: VaultContext, report: bool = True) -> None:
    """Flush pending saves and debounced syncs, then lock.

    With ``report`` the last sync result is printed, for commands that
    did not show it themselves.
    """
    if ctx.editor is not None and ctx.session.unlocked:
        shown = ctx.reconciler.last_result if ctx.reconciler is not None else None
        try:
            ctx.editor.flush()
        except WrongPassphrase as exc:
            console.print(f"[bold red]{exc}[/] Unlock again with the right master key.")
            sys.exit(1)
        if ctx.reconciler is not None:
            latest = ctx.reconciler.last_result
            if report or latest is not shown:
                print_sync_result(latest)
    ctx.session.close()
