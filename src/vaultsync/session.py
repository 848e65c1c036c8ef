"""
Session lifecycle: which account is open and the key that opens it.

    LoggedOut -> Authenticating -> Unlocked -> LoggedOut

The derived key and the passphrase live only on this object, in memory.
The passphrase is kept so keys can be derived for a salt minted on
another device; it is dropped with the key on close, invalidate or wipe.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from . import crypto
from .errors import (
    InvalidCredentials,
    PassphraseConfirmationRequired,
    PassphraseMismatch,
    SessionLocked,
    VaultSyncError,
)
from .models import LoginType, RemoteSession, Vault
from .store import AccountStore

logger = logging.getLogger("vaultsync.session")

MIN_ACCOUNT_ID_LENGTH = 3
MIN_PASSPHRASE_LENGTH = 6


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    UNLOCKED = "unlocked"


def validate_credentials(account_id: str, passphrase: str, creating: bool) -> None:
    """Basic shape checks before any key derivation.

    Raises:
        InvalidCredentials: Id too short, passphrase empty, or (on
            creation) passphrase too short.
    """
    if len(account_id.strip()) < MIN_ACCOUNT_ID_LENGTH:
        raise InvalidCredentials(
            f"Account id must be at least {MIN_ACCOUNT_ID_LENGTH} characters"
        )
    if not passphrase:
        raise InvalidCredentials("Passphrase is required")
    if creating and len(passphrase) < MIN_PASSPHRASE_LENGTH:
        raise InvalidCredentials(
            f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters"
        )


class SessionContext:
    """The one open account, its decrypted vault and its key.

    Args:
        store: Account store the session reads from and writes to.
    """

    def __init__(self, store: AccountStore):
        self.store = store
        self.state = SessionState.LOGGED_OUT
        self.account_id: Optional[str] = None
        self.vault: Optional[Vault] = None
        self.remote_linked = False
        self._key: Optional[bytes] = None
        self._passphrase: Optional[str] = None

    @property
    def unlocked(self) -> bool:
        return self.state == SessionState.UNLOCKED and self._key is not None

    @property
    def key(self) -> bytes:
        if not self.unlocked:
            raise SessionLocked("Session is locked. Unlock the account first.")
        return self._key

    def require_vault(self) -> Vault:
        if not self.unlocked or self.vault is None:
            raise SessionLocked("Session is locked. Unlock the account first.")
        return self.vault

    def open(
        self,
        account_id: str,
        passphrase: str,
        confirm: Optional[str] = None,
        salt: Optional[bytes] = None,
    ) -> Vault:
        """Unlock an existing account or create a new one.

        Args:
            account_id: Login or remote email.
            passphrase: Secret typed by the human.
            confirm: Second entry of the passphrase, needed on creation.
            salt: Salt to adopt on creation when the remote already
                holds this account.

        Raises:
            InvalidCredentials, PassphraseConfirmationRequired,
            PassphraseMismatch, LocalCorruption, WrongPassphrase.
        """
        if self.state != SessionState.LOGGED_OUT:
            self.close()

        creating = not self.store.exists(account_id)
        validate_credentials(account_id, passphrase, creating)

        self.state = SessionState.AUTHENTICATING
        try:
            if creating:
                if confirm is None:
                    raise PassphraseConfirmationRequired(
                        f"New account {account_id!r}: confirm the passphrase"
                    )
                if confirm != passphrase:
                    raise PassphraseMismatch("Passphrases do not match")
                meta = self.store.create(account_id, salt=salt)
                key = crypto.derive_key(passphrase, account_id, crypto.decode_salt(meta.salt))
                vault = Vault(account_id=account_id)
                self.store.save(account_id, vault, key, increment_version=False, debounce=0)
            else:
                key = crypto.derive_key(passphrase, account_id, self.store.get_salt(account_id))
                vault = self.store.load(account_id, key).vault
        except VaultSyncError:
            self._clear()
            raise

        self.account_id = account_id
        self.vault = vault
        self._key = key
        self._passphrase = passphrase
        self.remote_linked = self.has_remote_session()
        self.state = SessionState.UNLOCKED
        self.store.set_active(account_id)
        logger.info("Session unlocked for %s (created=%s)", account_id, creating)
        return vault

    def has_remote_session(self) -> bool:
        vault = self.vault
        return (
            vault is not None
            and vault.login_type == LoginType.REMOTE
            and vault.remote_session is not None
            and bool(vault.remote_session.remote_file_id or vault.remote_session.access_token)
        )

    def save(self, increment_version: bool = True, debounce: Optional[float] = None):
        """Persist the in-memory vault through the store."""
        vault = self.require_vault()
        return self.store.save(
            self.account_id,
            vault,
            self.key,
            increment_version=increment_version,
            debounce=debounce,
        )

    def persist(self) -> None:
        """Write the vault now without a new version.

        A staged batch is written first so its edit keeps its bump.
        """
        self.require_vault()
        self.store.flush(self.account_id)
        self.save(increment_version=False, debounce=0)

    def link_remote(self, remote_session: RemoteSession) -> None:
        """Switch the vault to remote login and store the session bundle.

        Saved only when the linkage changed, so re-linking the same
        session leaves the fingerprint untouched.
        """
        vault = self.require_vault()
        changed = vault.login_type != LoginType.REMOTE or vault.remote_session != remote_session
        vault.login_type = LoginType.REMOTE
        vault.remote_session = remote_session
        self.remote_linked = True
        if changed:
            self.persist()

    def drop_remote_linkage(self) -> None:
        """Degrade to local-only for the rest of this session."""
        if self.remote_linked:
            logger.info("Remote linkage dropped for %s", self.account_id)
        self.remote_linked = False

    def unlink_remote(self) -> None:
        """Make local-only mode permanent: back to local login, tokens kept."""
        vault = self.require_vault()
        self.drop_remote_linkage()
        if vault.login_type != LoginType.LOCAL:
            vault.login_type = LoginType.LOCAL
            self.persist()

    def key_for_salt(self, salt: bytes) -> bytes:
        """Derive this account's key under a different salt."""
        if not self.unlocked or self._passphrase is None:
            raise SessionLocked("Session is locked. Unlock the account first.")
        return crypto.derive_key(self._passphrase, self.account_id, salt)

    def adopt_salt(self, salt: bytes) -> bytes:
        """Move the account onto ``salt`` and re-encrypt the local vault."""
        new_key = self.key_for_salt(salt)
        self.store.flush(self.account_id)
        self.store.set_salt(self.account_id, salt)
        self._key = new_key
        self.save(increment_version=False, debounce=0)
        logger.info("Adopted remote salt for %s", self.account_id)
        return new_key

    def close(self) -> None:
        """Flush pending saves and lock."""
        if self.account_id is not None and self._key is not None:
            self.store.flush(self.account_id)
        self._clear()

    def invalidate(self) -> None:
        """Drop the key after a failed decrypt; the human must unlock again.

        Batches already staged were sealed with the local key, so they
        are still written before it goes.
        """
        if self.account_id is not None:
            self.store.flush(self.account_id)
            logger.warning("Session key invalidated for %s", self.account_id)
        self._clear()

    def wipe(self) -> bool:
        """Delete the open account's local data and lock."""
        account_id = self.account_id
        if account_id is None:
            raise SessionLocked("No account is open")
        self.store.discard_pending(account_id)
        self._clear()
        return self.store.wipe(account_id)

    def _clear(self) -> None:
        self._key = None
        self._passphrase = None
        self.vault = None
        self.account_id = None
        self.remote_linked = False
        self.state = SessionState.LOGGED_OUT
