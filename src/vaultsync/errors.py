"""
Error taxonomy for the vault and the sync layer.

Retryable failures carry ``retryable = True`` so callers can decide
between "try again later" and "stop and ask the human".
"""

from __future__ import annotations


class VaultSyncError(Exception):
    """Base class for every vaultsync failure."""

    retryable = False


class DecryptionError(VaultSyncError):
    """Authenticated decryption failed (wrong key or corrupted blob)."""


class WrongPassphrase(VaultSyncError):
    """The passphrase does not open this account's data.

    Fatal to the session: the in-memory key is cleared, the persisted
    ciphertext is left alone.
    """


class LocalCorruption(VaultSyncError):
    """An existing account is missing its salt or its metadata is unreadable."""


class AccountNotFound(VaultSyncError):
    """No local data exists for the requested account id."""


class AccountExists(VaultSyncError):
    """Tried to create an account id that already has local data."""


class InvalidCredentials(VaultSyncError):
    """Account id or passphrase fails the basic shape checks."""


class PassphraseConfirmationRequired(VaultSyncError):
    """First use of an account id needs the passphrase entered twice."""


class PassphraseMismatch(VaultSyncError):
    """The passphrase confirmation did not match."""


class SessionLocked(VaultSyncError):
    """An operation needed an unlocked session."""


class RemoteError(VaultSyncError):
    """Base class for remote file gateway failures."""


class RemoteUnauthorized(RemoteError):
    """The remote rejected our credential even after one refresh."""

    retryable = True


class RemoteNotFound(RemoteError):
    """The remote object does not exist (or belongs to another account)."""


class RemoteSchemaInvalid(RemoteError):
    """The remote object exists but its body is not a valid snapshot."""


class RemoteEmpty(RemoteSchemaInvalid):
    """The remote object exists but has no body yet."""


class RemoteTransportError(RemoteError):
    """Network or server failure. Safe to retry, nothing was mutated."""

    retryable = True
