"""Tests for the session lifecycle: open, create, close, invalidate, wipe."""

from __future__ import annotations

import pytest

from vaultsync import crypto
from vaultsync.errors import (
    InvalidCredentials,
    PassphraseConfirmationRequired,
    PassphraseMismatch,
    SessionLocked,
    WrongPassphrase,
)
from vaultsync.models import DEFAULT_LABELS, LoginType, Record, RemoteSession
from vaultsync.session import SessionContext, SessionState, validate_credentials

ACCOUNT = "alice@example.com"
PASSPHRASE = "correct horse"


class TestValidateCredentials:
    """Shape checks run before any key derivation."""

    def test_short_account_id(self) -> None:
        with pytest.raises(InvalidCredentials, match="at least 3"):
            validate_credentials("ab", "whatever", creating=False)

    def test_empty_passphrase(self) -> None:
        with pytest.raises(InvalidCredentials):
            validate_credentials("alice", "", creating=False)

    def test_short_passphrase_only_on_create(self) -> None:
        validate_credentials("alice", "abc", creating=False)
        with pytest.raises(InvalidCredentials, match="at least 6"):
            validate_credentials("alice", "abc", creating=True)


class TestOpen:
    """Creating and unlocking accounts."""

    def test_new_account_needs_confirmation(self, store) -> None:
        session = SessionContext(store)
        with pytest.raises(PassphraseConfirmationRequired):
            session.open(ACCOUNT, PASSPHRASE)
        assert not store.exists(ACCOUNT)
        assert session.state == SessionState.LOGGED_OUT

    def test_confirmation_mismatch(self, store) -> None:
        session = SessionContext(store)
        with pytest.raises(PassphraseMismatch):
            session.open(ACCOUNT, PASSPHRASE, confirm="something else")
        assert not store.exists(ACCOUNT)

    def test_create(self, session, store) -> None:
        assert session.unlocked
        assert session.vault.labels == DEFAULT_LABELS
        assert session.vault.version == 0
        assert session.vault.login_type == LoginType.LOCAL
        assert store.get_active() == ACCOUNT
        assert store.read_ciphertext(ACCOUNT) is not None
        assert not session.remote_linked

    def test_reopen(self, session, store) -> None:
        session.vault.records.append(Record(service="mail"))
        session.save(debounce=0)
        session.close()

        again = SessionContext(store)
        vault = again.open(ACCOUNT, PASSPHRASE)
        assert vault.version == 1
        assert vault.records[0].service == "mail"

    def test_wrong_passphrase(self, session, store) -> None:
        session.close()
        again = SessionContext(store)
        with pytest.raises(WrongPassphrase):
            again.open(ACCOUNT, "wrong passphrase")
        assert again.state == SessionState.LOGGED_OUT
        assert not again.unlocked

    def test_open_closes_previous(self, session, store) -> None:
        session.vault.records.append(Record(service="x"))
        session.save()
        session.open("bob@example.com", PASSPHRASE, confirm=PASSPHRASE)
        assert session.account_id == "bob@example.com"
        assert store.read_meta(ACCOUNT).version == 1

    def test_remote_linkage_restored_on_open(self, session, store) -> None:
        session.link_remote(RemoteSession(remote_file_id="f1", remote_email=ACCOUNT))
        session.close()
        again = SessionContext(store)
        again.open(ACCOUNT, PASSPHRASE)
        assert again.remote_linked
        assert again.vault.remote_session.remote_file_id == "f1"


class TestLocking:
    """close, invalidate and wipe all drop the key."""

    def test_close_flushes_pending(self, session, store) -> None:
        session.vault.records.append(Record(service="x"))
        session.save()
        assert store.has_pending(ACCOUNT)
        session.close()
        assert not store.has_pending(ACCOUNT)
        assert store.read_meta(ACCOUNT).version == 1
        assert session.state == SessionState.LOGGED_OUT

    def test_locked_access_raises(self, session) -> None:
        session.close()
        with pytest.raises(SessionLocked):
            session.key
        with pytest.raises(SessionLocked):
            session.require_vault()

    def test_invalidate(self, session, store) -> None:
        before = store.read_ciphertext(ACCOUNT)
        session.invalidate()
        assert not session.unlocked
        assert session.vault is None
        assert store.read_ciphertext(ACCOUNT) == before

    def test_wipe(self, session, store) -> None:
        session.save()
        assert session.wipe() is True
        assert not store.exists(ACCOUNT)
        assert not session.unlocked

    def test_wipe_requires_open_account(self, store) -> None:
        with pytest.raises(SessionLocked):
            SessionContext(store).wipe()


class TestSalt:
    """Deriving under and adopting another device's salt."""

    def test_key_for_salt(self, session) -> None:
        salt = b"\x05" * 16
        assert session.key_for_salt(salt) == crypto.derive_key(PASSPHRASE, ACCOUNT, salt)

    def test_adopt_salt_reencrypts(self, session, store) -> None:
        salt = b"\x05" * 16
        session.vault.records.append(Record(service="kept"))
        session.adopt_salt(salt)
        assert store.get_salt(ACCOUNT) == salt
        session.close()

        again = SessionContext(store)
        vault = again.open(ACCOUNT, PASSPHRASE)
        assert vault.records[0].service == "kept"
        assert vault.version == 0
