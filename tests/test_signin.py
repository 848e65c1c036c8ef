"""Tests for remote-linked sign-in across the three scenarios."""

from __future__ import annotations

import pytest

from vaultsync import crypto
from vaultsync.editor import VaultEditor
from vaultsync.errors import (
    InvalidCredentials,
    PassphraseConfirmationRequired,
    WrongPassphrase,
)
from vaultsync.models import LoginType, RemoteSession
from vaultsync.session import SessionContext
from vaultsync.store import AccountStore
from vaultsync.sync.backends import LocalRemoteStore
from vaultsync.sync.credentials import NullCredentials
from vaultsync.sync.engine import SyncReconciler
from vaultsync.sync.models import RemoteSnapshot, SyncChoice, SyncOutcome
from vaultsync.sync.signin import SignInScenario, determine_scenario, sign_in_remote

ACCOUNT = "alice@example.com"
PASSPHRASE = "correct horse"
REMOTE_FILENAME = "password_manager_data.json"


@pytest.fixture
def machine(tmp_path, remote_root, clock):
    """Factory for a logged-out machine pointed at the shared remote."""

    def _make(name: str, email=ACCOUNT):
        store = AccountStore(tmp_path / name, clock=clock)
        session = SessionContext(store)
        reconciler = SyncReconciler(
            session,
            LocalRemoteStore(remote_root),
            NullCredentials(email),
            chooser=lambda report: SyncChoice.DOWNLOAD,
            clock=clock,
        )
        return session, reconciler

    return _make


def _sign_in(session, reconciler, passphrase=PASSPHRASE, confirm=PASSPHRASE, account_id=None):
    return sign_in_remote(
        session, reconciler, passphrase, RemoteSession(), account_id=account_id, confirm=confirm,
    )


class TestNewAccount:
    """Scenario C: neither side knows the account."""

    def test_creates_and_uploads_v1(self, machine, remote_root) -> None:
        session, reconciler = machine("laptop")
        result = _sign_in(session, reconciler)

        assert result.scenario == SignInScenario.NEW_ACCOUNT
        assert result.account_id == ACCOUNT
        assert result.sync.outcome == SyncOutcome.UPLOADED
        assert session.vault.login_type == LoginType.REMOTE
        assert session.vault.remote_session.remote_file_id == REMOTE_FILENAME
        snapshot = LocalRemoteStore(remote_root).fetch_body(REMOTE_FILENAME)
        assert snapshot.version == 1
        assert snapshot.fingerprint == session.store.read_meta(ACCOUNT).fingerprint

    def test_needs_confirmation(self, machine) -> None:
        session, reconciler = machine("laptop")
        with pytest.raises(PassphraseConfirmationRequired):
            _sign_in(session, reconciler, confirm=None)
        assert not session.store.exists(ACCOUNT)

    def test_identity_from_credentials(self, machine) -> None:
        session, reconciler = machine("laptop", email="from-provider@example.com")
        result = _sign_in(session, reconciler)
        assert result.account_id == "from-provider@example.com"

    def test_no_identity(self, machine) -> None:
        session, reconciler = machine("laptop", email=None)
        with pytest.raises(InvalidCredentials):
            _sign_in(session, reconciler)

    def test_foreign_remote_is_ignored(self, machine, remote_root) -> None:
        remote = LocalRemoteStore(remote_root)
        remote.find_or_create(REMOTE_FILENAME)
        remote.overwrite_body(
            REMOTE_FILENAME,
            RemoteSnapshot(account_id="bob@example.com", ciphertext="abc", salt="AAAA", version=3),
        )
        session, reconciler = machine("laptop")
        scenario, _, snapshot = determine_scenario(session, reconciler, ACCOUNT)
        assert scenario == SignInScenario.NEW_ACCOUNT
        assert snapshot is None


class TestRemoteOnly:
    """Scenario B: the account exists only on the remote."""

    def _seed(self, machine):
        session, reconciler = machine("laptop")
        _sign_in(session, reconciler)
        VaultEditor(session, reconciler).create_record(service="mail", secret="pw")
        session.store.flush()
        reconciler.sync()
        session.close()

    def test_restores_from_remote(self, machine) -> None:
        self._seed(machine)
        session, reconciler = machine("phone")
        result = _sign_in(session, reconciler, confirm=None)

        assert result.scenario == SignInScenario.REMOTE_ONLY
        assert result.sync.outcome == SyncOutcome.DOWNLOADED
        assert [r.service for r in session.vault.records] == ["mail"]
        assert session.vault.version == 2

    def test_adopts_remote_salt(self, machine, tmp_path) -> None:
        self._seed(machine)
        laptop_salt = AccountStore(tmp_path / "laptop").get_salt(ACCOUNT)
        session, reconciler = machine("phone")
        _sign_in(session, reconciler, confirm=None)
        assert session.store.get_salt(ACCOUNT) == laptop_salt

    def test_wrong_passphrase_creates_nothing(self, machine) -> None:
        self._seed(machine)
        session, reconciler = machine("phone")
        with pytest.raises(WrongPassphrase):
            _sign_in(session, reconciler, passphrase="not the one", confirm=None)
        assert not session.store.exists(ACCOUNT)
        assert not session.unlocked


class TestLocalExists:
    """Scenario A: the account is already on this machine."""

    def test_reopens_and_compares(self, machine) -> None:
        session, reconciler = machine("laptop")
        _sign_in(session, reconciler)
        session.close()

        session, reconciler = machine("laptop")
        result = _sign_in(session, reconciler, confirm=None)
        assert result.scenario == SignInScenario.LOCAL_EXISTS
        assert result.sync.outcome == SyncOutcome.UP_TO_DATE

    def test_wrong_passphrase(self, machine) -> None:
        session, reconciler = machine("laptop")
        _sign_in(session, reconciler)
        session.close()

        session, reconciler = machine("laptop")
        with pytest.raises(WrongPassphrase):
            _sign_in(session, reconciler, passphrase="not the one")

    def test_local_account_linked_first_time(self, machine, tmp_path) -> None:
        store = AccountStore(tmp_path / "laptop")
        SessionContext(store).open(ACCOUNT, PASSPHRASE, confirm=PASSPHRASE)

        session, reconciler = machine("laptop")
        result = _sign_in(session, reconciler)
        assert result.scenario == SignInScenario.LOCAL_EXISTS
        assert result.sync.outcome == SyncOutcome.UPLOADED
        assert crypto.fingerprint(
            LocalRemoteStore(reconciler.remote.root).fetch_body(REMOTE_FILENAME).ciphertext
        ) == session.store.read_meta(ACCOUNT).fingerprint
