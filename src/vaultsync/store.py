"""
Account Store: per-account encrypted vault plus plain metadata on disk.

Storage layout:
    ~/.vaultsync/
    ├── active_account                 # id of the last active account
    └── accounts/
        └── <urlsafe-b64 account id>/
            ├── vault.enc              # base64 AES-GCM blob
            └── meta.json              # AccountMeta (salt, version, fingerprints)

Writes go through a tmp file and a rename so a crash never leaves a
half-written vault behind.

Version batching:
    A batch is the local-save debounce window. Debounced saves with
    ``increment_version`` only set a pending bump; the bump is applied
    once, when the batch is written. An immediate save (``debounce=0``)
    replaces any staged batch and writes now with exactly the flag it was
    given: an incrementing one bumps once, a non-incrementing one keeps
    the caller's version and the staged bump is dropped. Callers that
    must keep a staged edit's bump flush first (``SessionContext.persist``).
"""

from __future__ import annotations

import base64
import json
import logging
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from . import crypto
from .audit import DEFAULT_MAX_ENTRIES, audit_event
from .debounce import Debouncer
from .errors import (
    AccountExists,
    AccountNotFound,
    DecryptionError,
    LocalCorruption,
    WrongPassphrase,
)
from .models import AccountMeta, LoadedVault, Vault
from .sync.merge import dedupe_records, ensure_stable_ids

logger = logging.getLogger("vaultsync.store")

VAULT_FILENAME = "vault.enc"
META_FILENAME = "meta.json"
ACTIVE_FILENAME = "active_account"


@dataclass
class _PendingSave:
    """A staged batch waiting for its debounce window to close."""

    vault: Vault
    key: bytes
    debouncer: Debouncer
    pending_version_bump: bool = False


def account_key(account_id: str) -> str:
    """Filesystem-safe directory name for an account id."""
    raw = base64.urlsafe_b64encode(account_id.encode("utf-8")).decode("ascii")
    return raw.rstrip("=")


class AccountStore:
    """Local persistence for every account on this machine.

    Args:
        home: Vault home directory.
        save_debounce: Default local-save debounce window in seconds.
        clock: Monotonic clock, injectable for tests.
        audit_max_entries: Cap on the operation log.
    """

    def __init__(
        self,
        home: Path,
        save_debounce: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        audit_max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.home = Path(home).expanduser()
        self.accounts_dir = self.home / "accounts"
        self.save_debounce = save_debounce
        self.clock = clock
        self.audit_max_entries = audit_max_entries
        self._pending: dict[str, _PendingSave] = {}

    # ------------------------------------------------------------------
    # Paths and metadata
    # ------------------------------------------------------------------

    def _account_dir(self, account_id: str) -> Path:
        return self.accounts_dir / account_key(account_id)

    def _vault_path(self, account_id: str) -> Path:
        return self._account_dir(account_id) / VAULT_FILENAME

    def _meta_path(self, account_id: str) -> Path:
        return self._account_dir(account_id) / META_FILENAME

    @staticmethod
    def _atomic_write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.rename(path)

    def exists(self, account_id: str) -> bool:
        """Whether local data exists for the account."""
        return self._meta_path(account_id).exists() or self._vault_path(account_id).exists()

    def list_accounts(self) -> list[str]:
        """Account ids with readable metadata, sorted."""
        if not self.accounts_dir.is_dir():
            return []
        ids = []
        for meta_file in self.accounts_dir.glob(f"*/{META_FILENAME}"):
            try:
                ids.append(AccountMeta.model_validate_json(meta_file.read_text()).account_id)
            except ValidationError as exc:
                logger.warning("Skipping unreadable metadata %s: %s", meta_file, exc)
        return sorted(ids)

    def read_meta(self, account_id: str) -> AccountMeta:
        """Read the plain metadata of an account.

        Raises:
            AccountNotFound: No local data for the account.
            LocalCorruption: Metadata file unreadable.
        """
        meta_path = self._meta_path(account_id)
        if not meta_path.exists():
            if self._vault_path(account_id).exists():
                raise LocalCorruption(
                    f"Account {account_id!r} has a vault but no metadata (salt missing)"
                )
            raise AccountNotFound(f"No local data for account {account_id!r}")
        try:
            return AccountMeta.model_validate_json(meta_path.read_text())
        except ValidationError as exc:
            raise LocalCorruption(f"Metadata for {account_id!r} is unreadable: {exc}") from exc

    def _write_meta(self, meta: AccountMeta) -> None:
        self._atomic_write(self._meta_path(meta.account_id), meta.model_dump_json(indent=2))

    def read_ciphertext(self, account_id: str) -> Optional[str]:
        """The stored blob, or None when nothing has been saved yet."""
        vault_path = self._vault_path(account_id)
        if not vault_path.exists():
            return None
        return vault_path.read_text(encoding="utf-8").strip() or None

    def get_salt(self, account_id: str) -> bytes:
        """Decoded salt of an existing account.

        Raises:
            LocalCorruption: Salt missing or undecodable.
        """
        meta = self.read_meta(account_id)
        if not meta.salt:
            raise LocalCorruption(f"Salt missing for existing account {account_id!r}")
        try:
            return crypto.decode_salt(meta.salt)
        except ValueError as exc:
            raise LocalCorruption(str(exc)) from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, account_id: str, salt: Optional[bytes] = None) -> AccountMeta:
        """Register a new account with a fresh (or adopted) salt at version 0.

        Raises:
            AccountExists: Local data already exists for the id.
        """
        if self.exists(account_id):
            raise AccountExists(f"Account {account_id!r} already exists")
        meta = AccountMeta(
            account_id=account_id,
            salt=crypto.encode_salt(salt if salt is not None else crypto.generate_salt()),
        )
        self._write_meta(meta)
        logger.info("Created account %s", account_id)
        self._audit("ACCOUNT_CREATE", "Account created", account_id)
        return meta

    def wipe(self, account_id: str) -> bool:
        """Delete all local data of an account. Returns True if anything was removed."""
        pending = self._pending.pop(account_id, None)
        if pending is not None:
            pending.debouncer.cancel()
        account_dir = self._account_dir(account_id)
        if not account_dir.exists():
            return False
        shutil.rmtree(account_dir)
        if self.get_active() == account_id:
            (self.home / ACTIVE_FILENAME).unlink(missing_ok=True)
        logger.warning("Wiped local data for account %s", account_id)
        self._audit("ACCOUNT_WIPE", "Local data wiped", account_id)
        return True

    def get_active(self) -> Optional[str]:
        active_file = self.home / ACTIVE_FILENAME
        if not active_file.exists():
            return None
        return active_file.read_text(encoding="utf-8").strip() or None

    def set_active(self, account_id: Optional[str]) -> None:
        active_file = self.home / ACTIVE_FILENAME
        if account_id is None:
            active_file.unlink(missing_ok=True)
            return
        self._atomic_write(active_file, account_id)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self, account_id: str, key: bytes) -> LoadedVault:
        """Decrypt and reconstruct an account's vault.

        Records missing a stable id get one, duplicate ids keep the
        first-seen record, and draft markers are stripped.

        Raises:
            AccountNotFound: No local data.
            LocalCorruption: Salt missing or payload undecodable.
            WrongPassphrase: The key does not open the blob.
        """
        meta = self.read_meta(account_id)
        if not meta.salt:
            raise LocalCorruption(f"Salt missing for existing account {account_id!r}")

        blob = self.read_ciphertext(account_id)
        if blob is None:
            vault = Vault(account_id=account_id, version=meta.version)
            return LoadedVault(vault=vault, version=meta.version)

        try:
            plaintext = crypto.decrypt(key, blob)
        except DecryptionError as exc:
            logger.warning("Decryption failed for account %s", account_id)
            self._audit("LOAD_FAILED", "Wrong passphrase", account_id)
            raise WrongPassphrase("Invalid master key entered") from exc

        try:
            vault = Vault.model_validate_json(plaintext)
        except ValidationError as exc:
            raise LocalCorruption(f"Vault payload for {account_id!r} is malformed") from exc

        records, migrated = ensure_stable_ids(vault.records)
        records, removed = dedupe_records(records)
        for record in records:
            record.draft = False
        vault.records = records

        if migrated:
            logger.info("Assigned stable ids to %d record(s) of %s", migrated, account_id)
        if removed:
            logger.warning("Duplicate records removed after load: %d", removed)

        self._audit(
            "LOAD",
            f"Loaded {len(vault.records)} records, {len(vault.labels)} labels",
            account_id,
            {"version": vault.version},
        )
        return LoadedVault(
            vault=vault,
            version=vault.version,
            migrated_ids=migrated,
            duplicates_removed=removed,
        )

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(
        self,
        account_id: str,
        vault: Vault,
        key: bytes,
        increment_version: bool = True,
        debounce: Optional[float] = None,
    ) -> Optional[AccountMeta]:
        """Persist a vault, immediately or as part of a debounced batch.

        Args:
            account_id: Owner of the vault.
            vault: In-memory vault; its ``version`` is updated in place.
            key: Data-protection key.
            increment_version: Whether this save is a local edit.
            debounce: Seconds to wait; None uses the store default, 0
                writes synchronously.

        Returns:
            The new metadata when written now, None when staged.
        """
        if debounce is None:
            debounce = self.save_debounce

        pending = self._pending.get(account_id)

        if debounce <= 0:
            if pending is not None:
                pending.debouncer.cancel()
                del self._pending[account_id]
                if pending.pending_version_bump and not increment_version:
                    logger.debug(
                        "Staged bump for %s dropped, keeping version %d",
                        account_id,
                        vault.version,
                    )
            return self._write(account_id, vault, key, increment_version)

        if pending is None:
            pending = _PendingSave(
                vault=vault,
                key=key,
                debouncer=Debouncer(
                    debounce,
                    lambda: self._flush_one(account_id),
                    clock=self.clock,
                ),
            )
            self._pending[account_id] = pending
        else:
            pending.vault = vault
            pending.key = key
            pending.debouncer.delay = debounce
        if increment_version:
            pending.pending_version_bump = True
        pending.debouncer.trigger()
        return None

    def has_pending(self, account_id: Optional[str] = None) -> bool:
        if account_id is None:
            return bool(self._pending)
        return account_id in self._pending

    def flush(self, account_id: Optional[str] = None) -> int:
        """Write staged batches now. Returns the number written."""
        ids = [account_id] if account_id is not None else list(self._pending)
        written = 0
        for aid in ids:
            pending = self._pending.get(aid)
            if pending is not None and pending.debouncer.flush():
                written += 1
        return written

    def poll(self) -> int:
        """Write batches whose debounce window has elapsed."""
        written = 0
        for pending in list(self._pending.values()):
            if pending.debouncer.poll():
                written += 1
        return written

    def discard_pending(self, account_id: str) -> bool:
        """Drop a staged batch without writing it."""
        pending = self._pending.pop(account_id, None)
        if pending is None:
            return False
        pending.debouncer.cancel()
        return True

    def _flush_one(self, account_id: str) -> None:
        pending = self._pending.pop(account_id, None)
        if pending is None:
            return
        self._write(account_id, pending.vault, pending.key, pending.pending_version_bump)

    def _write(self, account_id: str, vault: Vault, key: bytes, bump: bool) -> AccountMeta:
        meta = self.read_meta(account_id)
        if not meta.salt:
            raise LocalCorruption(f"Salt missing for existing account {account_id!r}")

        prepared, _ = ensure_stable_ids(vault.records)
        for original, copy in zip(vault.records, prepared):
            if original.stable_id is None:
                original.stable_id = copy.stable_id
        records, removed = dedupe_records(vault.records)
        if removed:
            logger.warning("Duplicate records removed before save: %d", removed)
            vault.records = records

        if bump:
            vault.version += 1
            vault.modified_at = datetime.now(timezone.utc)

        blob = crypto.encrypt(key, vault.model_dump_json())
        digest = crypto.fingerprint(blob)
        self._atomic_write(self._vault_path(account_id), blob)

        meta.version = vault.version
        meta.fingerprint = digest
        self._write_meta(meta)

        logger.debug(
            "Saved %s: version=%d fingerprint=%s",
            account_id,
            vault.version,
            crypto.short(digest),
        )
        self._audit(
            "SAVE",
            f"Saved {len(vault.records)} records, {len(vault.labels)} labels",
            account_id,
            {"version": vault.version, "incremented": bump},
        )
        return meta

    # ------------------------------------------------------------------
    # Metadata updates
    # ------------------------------------------------------------------

    def set_version(self, account_id: str, version: int) -> AccountMeta:
        """Overwrite the plain version mirror."""
        meta = self.read_meta(account_id)
        meta.version = version
        self._write_meta(meta)
        return meta

    def set_fingerprint(self, account_id: str, digest: Optional[str]) -> AccountMeta:
        meta = self.read_meta(account_id)
        meta.fingerprint = digest
        self._write_meta(meta)
        return meta

    def set_salt(self, account_id: str, salt: bytes) -> AccountMeta:
        """Replace the account salt. The caller re-encrypts under the new key."""
        meta = self.read_meta(account_id)
        meta.salt = crypto.encode_salt(salt)
        self._write_meta(meta)
        return meta

    def record_remote_state(
        self,
        account_id: str,
        modified: Optional[str],
        digest: Optional[str],
    ) -> AccountMeta:
        """Cache the last known remote modification marker and fingerprint."""
        meta = self.read_meta(account_id)
        meta.last_remote_modified = modified
        meta.last_remote_fingerprint = digest
        self._write_meta(meta)
        return meta

    def clear_remote_state(self, account_id: str) -> AccountMeta:
        return self.record_remote_state(account_id, None, None)

    def _audit(
        self,
        event_type: str,
        detail: str,
        account_id: str,
        metadata: Optional[dict] = None,
    ) -> None:
        audit_event(
            self.home,
            event_type,
            detail,
            account=account_id,
            metadata=metadata,
            max_entries=self.audit_max_entries,
        )
