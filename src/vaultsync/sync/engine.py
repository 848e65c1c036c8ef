"""
Sync Reconciler -- decides what to do with a local vault and a remote copy.

Each attempt walks:

    Idle -> CheckingRemote -> {NoConflict, VersionConflict, ContentConflict}
         -> {Uploading | Downloading | Merging | AwaitingUserChoice} -> Idle

    vaultsync sync now   ->  metadata check -> upload (or reconcile if remote moved)
    vaultsync sync pull  ->  fetch body -> classify -> ask the human on conflict

Conflicts are never resolved automatically: the chooser collaborator
always picks upload, download or cancel. Download merges remote records
into the local vault and adopts the remote version.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from .. import crypto
from ..audit import audit_event
from ..config import VaultSyncConfig
from ..debounce import Debouncer
from ..errors import (
    DecryptionError,
    RemoteError,
    RemoteNotFound,
    RemoteSchemaInvalid,
    RemoteUnauthorized,
    WrongPassphrase,
)
from ..models import Vault
from ..session import SessionContext
from .backends import RemoteStore
from .credentials import CredentialProvider
from .merge import merge_labels, merge_records
from .models import (
    ConflictKind,
    ConflictReport,
    RemoteSnapshot,
    SyncChoice,
    SyncOutcome,
    SyncPhase,
    SyncResult,
    SyncStats,
)

logger = logging.getLogger("vaultsync.sync.engine")

Chooser = Callable[[ConflictReport], SyncChoice]


def classify(
    local_version: int,
    remote_version: int,
    local_fingerprint: Optional[str],
    remote_fingerprint: Optional[str],
) -> ConflictKind:
    """Relationship between the two sides.

    Equal versions and equal fingerprints mean nothing to do; equal
    versions with different content is a content conflict; any version
    difference is a version conflict, whichever side is ahead.
    """
    if local_version != remote_version:
        return ConflictKind.VERSION_CONFLICT
    if local_fingerprint and remote_fingerprint and local_fingerprint == remote_fingerprint:
        return ConflictKind.NO_CONFLICT
    return ConflictKind.CONTENT_CONFLICT


class SyncReconciler:
    """Orchestrates two-way sync of one account against one remote file.

    Inert unless the session is unlocked and linked to a remote. Only one
    attempt runs at a time; a trigger arriving mid-attempt re-arms the
    sync debounce so it runs afterwards.
    """

    def __init__(
        self,
        session: SessionContext,
        remote: Optional[RemoteStore],
        credentials: CredentialProvider,
        chooser: Optional[Chooser] = None,
        config: Optional[VaultSyncConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.store = session.store
        self.remote = remote
        self.credentials = credentials
        self.chooser = chooser
        self.config = config or VaultSyncConfig()
        self.phase = SyncPhase.IDLE
        self.has_pending_changes = False
        self.last_result: Optional[SyncResult] = None
        self.last_synced_at: Optional[datetime] = None
        self.status_message = ""
        self._remote_id: Optional[str] = None
        self._in_flight = False
        self._debouncer = Debouncer(
            self.config.sync_debounce_seconds, self._debounced_sync, clock=clock,
        )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        """Whether there is a live remote linkage to sync against."""
        return self.remote is not None and self.session.unlocked and self.session.remote_linked

    @property
    def sync_pending(self) -> bool:
        return self._debouncer.pending

    def on_data_changed(self, immediate: bool = False) -> Optional[SyncResult]:
        """Hook for local mutations.

        Debounced by default; ``immediate`` cancels the pending debounce
        and syncs now.
        """
        if not self.active:
            logger.debug("Data changed, but no remote linkage: skipping sync")
            return None
        self.has_pending_changes = True
        if immediate and not self._in_flight:
            self._debouncer.cancel()
            return self.sync()
        self._debouncer.trigger()
        return None

    def poll(self) -> Optional[SyncResult]:
        """Drive both debounce timers. Returns a result if a sync ran."""
        self.store.poll()
        if self._debouncer.poll():
            return self.last_result
        return None

    def _debounced_sync(self) -> None:
        if self.has_pending_changes:
            self.sync()
        else:
            logger.debug("Sync debounce fired with nothing pending")

    def sync(self, force: bool = False) -> SyncResult:
        """Push local changes, reconciling first if the remote moved.

        Args:
            force: Skip the cheap metadata check and compare full bodies.
        """
        return self._run(full=force)

    def pull(self) -> SyncResult:
        """Full comparison, used on sign-in and unlock."""
        return self._run(full=True)

    def flush(self) -> Optional[SyncResult]:
        """Run a debounced sync now instead of waiting for its deadline."""
        if self._debouncer.flush():
            return self.last_result
        return None

    def cancel_pending(self) -> bool:
        self.has_pending_changes = False
        return self._debouncer.cancel()

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------

    def _run(self, full: bool) -> SyncResult:
        if self._in_flight:
            logger.info("Sync already in progress, queueing another run")
            self.has_pending_changes = True
            self._debouncer.trigger()
            return SyncResult(outcome=SyncOutcome.SKIPPED, message="Sync already in progress")
        if not self.active:
            return self._finish(SyncResult(outcome=SyncOutcome.SKIPPED, message="Local only"))

        account_id = self.session.account_id
        self._in_flight = True
        try:
            result = self._attempt(full)
        except WrongPassphrase as exc:
            self.status_message = "Wrong master key for this account's remote data"
            self._audit("SYNC_ERROR", str(exc), account_id)
            self._finish(SyncResult(outcome=SyncOutcome.FAILED, message=self.status_message))
            raise
        except RemoteError as exc:
            logger.warning("Sync failed for %s: %s", account_id, exc)
            self._audit(
                "SYNC_ERROR", str(exc), account_id, {"retryable": exc.retryable},
            )
            self.status_message = "Sync error"
            if isinstance(exc, RemoteUnauthorized):
                self.status_message = self.credentials.status_message or str(exc)
            return self._finish(SyncResult(outcome=SyncOutcome.FAILED, message=str(exc)))
        finally:
            self._in_flight = False
            self.phase = SyncPhase.IDLE
        return self._finish(result)

    def _finish(self, result: SyncResult) -> SyncResult:
        self.last_result = result
        if result.outcome in (SyncOutcome.UP_TO_DATE, SyncOutcome.UPLOADED, SyncOutcome.DOWNLOADED):
            self.last_synced_at = result.finished_at
            self.status_message = f"Synchronized {result.finished_at.astimezone():%H:%M:%S}"
        elif result.outcome == SyncOutcome.CANCELLED:
            self.status_message = "Switched to local mode"
        return result

    def _attempt(self, full: bool) -> SyncResult:
        account_id = self.session.account_id
        self.phase = SyncPhase.CHECKING_REMOTE

        if not self.credentials.ensure_valid():
            raise RemoteUnauthorized(
                self.credentials.status_message or "Remote credential is not valid"
            )

        self.store.flush(account_id)
        remote_id = self._ensure_remote_id()
        meta = self.store.read_meta(account_id)

        if not full and meta.last_remote_modified:
            try:
                remote_meta = self.remote.fetch_metadata(remote_id)
            except RemoteNotFound:
                remote_meta = None
            if remote_meta is not None and remote_meta.modified_marker == meta.last_remote_modified:
                if meta.fingerprint and meta.fingerprint == meta.last_remote_fingerprint:
                    self.has_pending_changes = False
                    return SyncResult(
                        outcome=SyncOutcome.UP_TO_DATE,
                        local_version=meta.version,
                        remote_version=meta.version,
                        message="Already synchronized",
                    )
                return self._upload(remote_id, "remote unchanged since last sync")
            logger.info("Remote changed since last sync, comparing contents")

        try:
            snapshot = self.remote.fetch_body(remote_id)
        except RemoteNotFound:
            logger.info("Remote file missing, creating it")
            self._forget_remote_id()
            return self._upload(self._ensure_remote_id(), "remote absent")
        except RemoteSchemaInvalid as exc:
            logger.warning("Remote file unusable (%s), recreating from local", exc)
            return self._upload(remote_id, "remote empty or invalid")

        if snapshot.account_id != account_id:
            logger.warning(
                "Remote file belongs to another account, treating as not found for %s",
                account_id,
            )
            return self._upload(remote_id, "remote belongs to another account")

        try:
            return self.reconcile(snapshot, remote_id)
        except RemoteSchemaInvalid as exc:
            logger.warning("Remote vault unreadable (%s), recreating from local", exc)
            return self._upload(remote_id, "remote payload invalid")

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def reconcile(self, snapshot: RemoteSnapshot, remote_id: Optional[str] = None) -> SyncResult:
        """Compare a fetched snapshot with local state and act on it.

        Raises:
            WrongPassphrase: The session key cannot open the remote data.
                The session is invalidated; local ciphertext is untouched.
            RemoteSchemaInvalid: The remote decrypts but is not a vault.
        """
        account_id = self.session.account_id
        remote_id = remote_id or self._ensure_remote_id()
        meta = self.store.read_meta(account_id)
        remote_fp = crypto.fingerprint(snapshot.ciphertext)
        kind = classify(meta.version, snapshot.version, meta.fingerprint, remote_fp)

        logger.info(
            "Sync %s: local v%d (%s) vs remote v%d (%s) -> %s",
            account_id,
            meta.version,
            crypto.short(meta.fingerprint),
            snapshot.version,
            crypto.short(remote_fp),
            kind.value,
        )

        if kind == ConflictKind.NO_CONFLICT:
            if meta.last_remote_fingerprint != remote_fp or not meta.last_remote_modified:
                remote_meta = self.remote.fetch_metadata(remote_id)
                self.store.record_remote_state(account_id, remote_meta.modified_marker, remote_fp)
            self.has_pending_changes = False
            return SyncResult(
                outcome=SyncOutcome.UP_TO_DATE,
                kind=kind,
                local_version=meta.version,
                remote_version=snapshot.version,
                message="Already synchronized",
            )

        remote_vault, remote_salt = self._open_remote(snapshot)
        report = ConflictReport(
            account_id=account_id,
            kind=kind,
            local=self._local_stats(),
            remote=SyncStats(
                version=snapshot.version,
                records=len(remote_vault.records),
                labels=len(remote_vault.labels),
                size_bytes=len(snapshot.ciphertext),
                modified_at=snapshot.modified_at,
            ),
        )

        if self.chooser is None:
            logger.warning("Conflict for %s but nobody to ask, leaving both sides", account_id)
            return SyncResult(
                outcome=SyncOutcome.SKIPPED,
                kind=kind,
                local_version=meta.version,
                remote_version=snapshot.version,
                message="Conflict needs a decision",
            )

        self.phase = SyncPhase.AWAITING_USER_CHOICE
        choice = self.chooser(report)
        self._audit(
            "SYNC_CONFLICT",
            f"{kind.value}: user chose {choice.value}",
            account_id,
            {"local_version": meta.version, "remote_version": snapshot.version},
        )

        if choice == SyncChoice.UPLOAD:
            result = self._upload(remote_id, "user chose upload")
        elif choice == SyncChoice.DOWNLOAD:
            result = self._download(snapshot, remote_vault, remote_salt, remote_fp, remote_id)
        else:
            self.session.drop_remote_linkage()
            self.cancel_pending()
            result = SyncResult(
                outcome=SyncOutcome.CANCELLED,
                message="Switched to local mode",
            )
        result.kind = kind
        result.choice = choice
        return result

    def _open_remote(self, snapshot: RemoteSnapshot) -> tuple[Vault, bytes]:
        account_id = self.session.account_id
        if not snapshot.salt:
            raise RemoteSchemaInvalid("Remote file has no salt")
        try:
            remote_salt = crypto.decode_salt(snapshot.salt)
        except ValueError as exc:
            raise RemoteSchemaInvalid(str(exc)) from exc

        if remote_salt == self.store.get_salt(account_id):
            key = self.session.key
        else:
            key = self.session.key_for_salt(remote_salt)

        try:
            plaintext = crypto.decrypt(key, snapshot.ciphertext)
        except DecryptionError as exc:
            logger.error("Cannot decrypt remote data for %s", account_id)
            self.session.invalidate()
            raise WrongPassphrase(
                "The master key does not open this account's remote data"
            ) from exc

        try:
            vault = Vault.model_validate_json(plaintext)
        except ValidationError as exc:
            raise RemoteSchemaInvalid("Remote payload is not a vault") from exc
        return vault, remote_salt

    def _local_stats(self) -> SyncStats:
        vault = self.session.require_vault()
        blob = self.store.read_ciphertext(self.session.account_id) or ""
        return SyncStats(
            version=vault.version,
            records=len(vault.records),
            labels=len(vault.labels),
            size_bytes=len(blob),
            modified_at=vault.modified_at,
        )

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def _upload(self, remote_id: str, reason: str) -> SyncResult:
        account_id = self.session.account_id
        self.phase = SyncPhase.UPLOADING
        self.store.flush(account_id)

        vault = self.session.require_vault()
        if vault.version == 0:
            logger.warning("Version is 0, setting version to 1 before first upload")
            vault.version = 1
            self.session.save(increment_version=False, debounce=0)
        elif self.store.read_ciphertext(account_id) is None:
            self.session.save(increment_version=False, debounce=0)

        meta = self.store.read_meta(account_id)
        blob = self.store.read_ciphertext(account_id)
        digest = crypto.fingerprint(blob)
        snapshot = RemoteSnapshot(
            account_id=account_id,
            ciphertext=blob,
            salt=meta.salt,
            version=meta.version,
            fingerprint=digest,
        )

        logger.info("Uploading %s v%d (%s): %s", account_id, meta.version, crypto.short(digest), reason)
        self.remote.overwrite_body(remote_id, snapshot)

        if meta.fingerprint != digest:
            self.store.set_fingerprint(account_id, digest)
        remote_meta = self.remote.fetch_metadata(remote_id)
        self.store.record_remote_state(account_id, remote_meta.modified_marker, digest)
        self.has_pending_changes = False

        self._audit("SYNC_UPLOAD", f"Uploaded v{meta.version}: {reason}", account_id)
        return SyncResult(
            outcome=SyncOutcome.UPLOADED,
            local_version=meta.version,
            remote_version=meta.version,
            message=f"Uploaded v{meta.version}",
        )

    def _download(
        self,
        snapshot: RemoteSnapshot,
        remote_vault: Vault,
        remote_salt: bytes,
        remote_fp: str,
        remote_id: str,
    ) -> SyncResult:
        account_id = self.session.account_id
        self.phase = SyncPhase.MERGING
        local_vault = self.session.require_vault()

        merged_records = merge_records(local_vault.records, remote_vault.records)
        merged_labels = merge_labels(local_vault.labels, remote_vault.labels)
        kept_local = (
            len(merged_records) > len(remote_vault.records)
            or len(merged_labels) > len(remote_vault.labels)
        )
        merged = local_vault.model_copy(
            update={
                "records": merged_records,
                "labels": merged_labels,
                "version": snapshot.version,
            }
        )

        self.phase = SyncPhase.DOWNLOADING
        self.session.vault = merged
        try:
            if remote_salt != self.store.get_salt(account_id):
                self.session.adopt_salt(remote_salt)
            else:
                self.session.save(increment_version=False, debounce=0)
        except OSError:
            self.session.vault = local_vault
            raise

        meta = self.store.read_meta(account_id)
        if meta.version != snapshot.version:
            logger.warning(
                "Version changed after merge write, correcting: %d -> %d",
                meta.version,
                snapshot.version,
            )
            merged.version = snapshot.version
            self.session.vault = merged
            self.session.save(increment_version=False, debounce=0)
        self.store.set_fingerprint(account_id, remote_fp)

        remote_meta = self.remote.fetch_metadata(remote_id)
        self.store.record_remote_state(account_id, remote_meta.modified_marker, remote_fp)
        self._audit(
            "SYNC_DOWNLOAD",
            f"Merged remote v{snapshot.version}: {len(merged_records)} records",
            account_id,
        )

        if kept_local:
            logger.info("Merge kept local-only content, uploading merged vault")
            self._upload(remote_id, "merged vault has local-only content")

        self.has_pending_changes = False
        return SyncResult(
            outcome=SyncOutcome.DOWNLOADED,
            local_version=snapshot.version,
            remote_version=snapshot.version,
            message=f"Synced from remote v{snapshot.version}",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_remote_id(self) -> str:
        if self._remote_id:
            return self._remote_id
        vault = self.session.require_vault()
        remote_session = vault.remote_session
        if remote_session is not None and remote_session.remote_file_id:
            self._remote_id = remote_session.remote_file_id
            return self._remote_id
        self._remote_id = self.remote.find_or_create(self.config.remote_filename)
        if remote_session is not None:
            remote_session.remote_file_id = self._remote_id
        return self._remote_id

    def _forget_remote_id(self) -> None:
        self._remote_id = None
        vault = self.session.vault
        if vault is not None and vault.remote_session is not None:
            vault.remote_session.remote_file_id = None

    def status_summary(self) -> str:
        """One line describing the sync state, for display."""
        if not self.session.unlocked:
            return "Locked"
        vault = self.session.vault
        version = vault.version if vault is not None else 0
        if not self.active:
            return f"Local only (v{version})"
        if self.phase != SyncPhase.IDLE:
            return f"v{version} - {self.phase.value.replace('_', ' ')}"
        parts = [f"v{version}", self.remote.name]
        if not self.remote.available():
            parts.append("remote unavailable")
        if self.status_message:
            parts.append(self.status_message)
        elif self.last_synced_at is None:
            parts.append("not synced yet")
        if self.has_pending_changes or self._debouncer.pending:
            parts.append("changes pending")
        return " - ".join(parts)

    def _audit(
        self,
        event_type: str,
        detail: str,
        account_id: Optional[str],
        metadata: Optional[dict] = None,
    ) -> None:
        audit_event(
            self.store.home,
            event_type,
            detail,
            account=account_id,
            metadata=metadata,
            max_entries=self.config.audit_max_entries,
        )
