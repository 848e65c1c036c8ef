"""
Remote-linked sign-in.

Three situations, decided before any local state is touched:

    A  local account exists      -> unlock it, link, full comparison
    B  only the remote has it    -> adopt the remote salt, create locally, pull
    C  neither side has it       -> create (confirmation needed), upload v1

In B the passphrase is checked by decrypting the remote copy first, so a
wrong passphrase never leaves a half-created local account behind.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .. import crypto
from ..errors import (
    DecryptionError,
    InvalidCredentials,
    RemoteNotFound,
    RemoteSchemaInvalid,
    WrongPassphrase,
)
from ..models import RemoteSession
from ..session import SessionContext
from .engine import SyncReconciler
from .models import RemoteSnapshot, SyncResult

logger = logging.getLogger("vaultsync.sync.signin")


class SignInScenario(str, Enum):
    """Which side already holds the account."""

    LOCAL_EXISTS = "A"
    REMOTE_ONLY = "B"
    NEW_ACCOUNT = "C"


class SignInResult(BaseModel):
    """What happened during a remote-linked sign-in."""

    scenario: SignInScenario
    account_id: str
    remote_id: str
    sync: Optional[SyncResult] = None


def determine_scenario(
    session: SessionContext,
    reconciler: SyncReconciler,
    account_id: str,
) -> tuple[SignInScenario, str, Optional[RemoteSnapshot]]:
    """Look at both sides and classify the sign-in.

    Returns:
        (scenario, remote id, remote snapshot if it belongs to the account)
    """
    remote = reconciler.remote
    remote_id = remote.find_or_create(reconciler.config.remote_filename)
    snapshot: Optional[RemoteSnapshot] = None
    try:
        snapshot = remote.fetch_body(remote_id)
    except (RemoteNotFound, RemoteSchemaInvalid) as exc:
        logger.info("No usable remote data: %s", exc)
    if snapshot is not None and snapshot.account_id != account_id:
        logger.warning("Remote file belongs to another account, ignoring it")
        snapshot = None

    if session.store.exists(account_id):
        return SignInScenario.LOCAL_EXISTS, remote_id, snapshot
    if snapshot is not None and snapshot.salt:
        return SignInScenario.REMOTE_ONLY, remote_id, snapshot
    return SignInScenario.NEW_ACCOUNT, remote_id, None


def sign_in_remote(
    session: SessionContext,
    reconciler: SyncReconciler,
    passphrase: str,
    remote_session: RemoteSession,
    account_id: Optional[str] = None,
    confirm: Optional[str] = None,
) -> SignInResult:
    """Open (or create) the account tied to a remote identity and sync it.

    Args:
        session: Session to open.
        reconciler: Reconciler bound to the same session.
        passphrase: Master passphrase.
        remote_session: Tokens from the consent flow.
        account_id: Remote identity; asked from the credential provider
            when omitted.
        confirm: Passphrase confirmation, needed only for a new account.

    Raises:
        InvalidCredentials: No identity could be determined.
        WrongPassphrase: The passphrase does not open the remote copy (B)
            or the local copy (A).
        PassphraseConfirmationRequired, PassphraseMismatch: New account (C).
    """
    account_id = account_id or remote_session.remote_email or reconciler.credentials.linked_email()
    if not account_id:
        raise InvalidCredentials("Cannot determine the remote account identity")
    remote_session.remote_email = account_id

    scenario, remote_id, snapshot = determine_scenario(session, reconciler, account_id)
    logger.info("Sign-in scenario %s for %s", scenario.value, account_id)
    remote_session.remote_file_id = remote_id

    if scenario == SignInScenario.LOCAL_EXISTS:
        session.open(account_id, passphrase)
        session.link_remote(remote_session)
        result = reconciler.pull()

    elif scenario == SignInScenario.REMOTE_ONLY:
        salt = crypto.decode_salt(snapshot.salt)
        key = crypto.derive_key(passphrase, account_id, salt)
        try:
            crypto.decrypt(key, snapshot.ciphertext)
        except DecryptionError as exc:
            raise WrongPassphrase("Invalid master key for the remote data") from exc
        session.open(account_id, passphrase, confirm=passphrase, salt=salt)
        session.link_remote(remote_session)
        result = reconciler.pull()

    else:
        session.open(account_id, passphrase, confirm=confirm)
        session.link_remote(remote_session)
        session.save(increment_version=True, debounce=0)
        result = reconciler.sync(force=True)

    return SignInResult(
        scenario=scenario,
        account_id=account_id,
        remote_id=remote_id,
        sync=result,
    )
