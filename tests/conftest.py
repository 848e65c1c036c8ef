"""Shared test fixtures for vaultsync."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import pytest

from vaultsync import crypto
from vaultsync.config import VaultSyncConfig
from vaultsync.editor import VaultEditor
from vaultsync.models import RemoteSession
from vaultsync.session import SessionContext
from vaultsync.store import AccountStore
from vaultsync.sync.backends import LocalRemoteStore
from vaultsync.sync.credentials import NullCredentials
from vaultsync.sync.engine import SyncReconciler
from vaultsync.sync.models import ConflictReport, SyncChoice

PASSPHRASE = "correct horse"
ACCOUNT = "alice@example.com"
REMOTE_FILENAME = "password_manager_data.json"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Device:
    """One machine: its own home, store, session and reconciler."""

    home: Path
    store: AccountStore
    session: SessionContext
    reconciler: SyncReconciler
    editor: VaultEditor
    chooser_calls: list


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
    """Keep PBKDF2 cheap in tests."""
    monkeypatch.setattr(crypto, "KDF_ITERATIONS", 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Provide a temporary vault home directory."""
    vault_home = tmp_path / ".vaultsync"
    vault_home.mkdir()
    return vault_home


@pytest.fixture
def store(home: Path, clock: FakeClock) -> AccountStore:
    return AccountStore(home, save_debounce=0.5, clock=clock)


@pytest.fixture
def session(store: AccountStore) -> SessionContext:
    """An unlocked session on a freshly created account."""
    ctx = SessionContext(store)
    ctx.open(ACCOUNT, PASSPHRASE, confirm=PASSPHRASE)
    return ctx


@pytest.fixture
def remote_root(tmp_path: Path) -> Path:
    return tmp_path / "remote"


@pytest.fixture
def make_device(tmp_path: Path, remote_root: Path, clock: FakeClock):
    """Factory for devices sharing one folder remote."""

    def _make(
        name: str,
        choice: Optional[SyncChoice] = SyncChoice.DOWNLOAD,
        passphrase: str = PASSPHRASE,
        account: str = ACCOUNT,
        chooser: Optional[Callable[[ConflictReport], SyncChoice]] = None,
        link: bool = True,
        salt: Optional[bytes] = None,
    ) -> Device:
        device_home = tmp_path / name
        store = AccountStore(device_home, save_debounce=0.5, clock=clock)
        session = SessionContext(store)
        session.open(account, passphrase, confirm=passphrase, salt=salt)
        calls: list = []

        def record_choice(report: ConflictReport) -> SyncChoice:
            calls.append(report)
            return choice

        if chooser is None and choice is not None:
            chooser = record_choice
        reconciler = SyncReconciler(
            session,
            LocalRemoteStore(remote_root),
            NullCredentials(account),
            chooser=chooser,
            config=VaultSyncConfig(),
            clock=clock,
        )
        if link:
            session.link_remote(RemoteSession(remote_email=account))
        return Device(
            home=device_home,
            store=store,
            session=session,
            reconciler=reconciler,
            editor=VaultEditor(session, reconciler),
            chooser_calls=calls,
        )

    return _make


@pytest.fixture
def bump_to():
    """Save immediately until a device's vault reaches a version."""

    def _bump(device: Device, version: int) -> None:
        while device.session.vault.version < version:
            device.session.save(debounce=0)

    return _bump
