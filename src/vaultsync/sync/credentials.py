"""
Credential providers for the remote gateway.

The reconciler only ever asks three things of a provider: is the
credential usable (``ensure_valid``), try to renew it (``refresh``), and
who does it belong to (``linked_email``). Acquiring tokens in the first
place (the interactive consent flow) happens elsewhere.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import requests

from ..errors import VaultSyncError
from ..models import RemoteSession

logger = logging.getLogger("vaultsync.sync.credentials")

TOKENINFO_URL = "https://www.googleapis.com/oauth2/v1/tokeninfo"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
TOKEN_URL = "https://oauth2.googleapis.com/token"

REAUTH_TIMEOUT_MESSAGE = "Token expired - please enter master key and sign in again"


class CredentialProvider(ABC):
    """Interface the remote gateway and the reconciler depend on."""

    name: str = "base"
    status_message: str = ""

    @abstractmethod
    def access_token(self) -> Optional[str]:
        """Current bearer token, if any."""

    @abstractmethod
    def refresh(self) -> bool:
        """Try once to renew the access token."""

    @abstractmethod
    def ensure_valid(self) -> bool:
        """Make sure the credential is usable, renewing if needed."""

    @abstractmethod
    def linked_email(self) -> Optional[str]:
        """Identity the credential belongs to."""


class NullCredentials(CredentialProvider):
    """Provider for backends that need no authentication (local folders)."""

    name = "none"

    def __init__(self, email: Optional[str] = None):
        self._email = email

    def access_token(self) -> Optional[str]:
        return None

    def refresh(self) -> bool:
        return False

    def ensure_valid(self) -> bool:
        return True

    def linked_email(self) -> Optional[str]:
        return self._email


class GoogleCredentials(CredentialProvider):
    """OAuth2 bearer tokens for Google Drive.

    Tokens live in the ``RemoteSession`` bundle stored inside the
    encrypted vault; ``on_tokens_changed`` is called whenever they are
    renewed so the caller can persist them.

    When there is no refresh token, re-authorization needs the master
    passphrase again. ``passphrase_source`` is polled up to
    ``max_checks`` times, ``poll_interval`` seconds apart; once it yields
    a value ``reauthorize`` is called with it and must return a fresh
    session bundle. Running out of checks is a terminal failure with a
    status message, never a silent hang.
    """

    name = "gdrive"

    def __init__(
        self,
        remote_session: RemoteSession,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 30,
        passphrase_source: Optional[Callable[[], Optional[str]]] = None,
        reauthorize: Optional[Callable[[str], Optional[RemoteSession]]] = None,
        on_tokens_changed: Optional[Callable[[RemoteSession], None]] = None,
        max_checks: int = 120,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.remote_session = remote_session
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.passphrase_source = passphrase_source
        self.reauthorize = reauthorize
        self.on_tokens_changed = on_tokens_changed
        self.max_checks = max_checks
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.status_message = ""

    def access_token(self) -> Optional[str]:
        return self.remote_session.access_token

    def check_valid(self) -> bool:
        """Ask the tokeninfo endpoint whether the access token is alive."""
        token = self.remote_session.access_token
        if not token:
            return False
        try:
            resp = requests.get(
                TOKENINFO_URL,
                params={"access_token": token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Token validity check failed: %s", exc)
            return False
        if resp.status_code != 200:
            return False
        try:
            expires_in = int(resp.json().get("expires_in", 0))
        except (ValueError, TypeError):
            return False
        return expires_in > 0

    def refresh(self) -> bool:
        """Exchange the refresh token for a new access token."""
        refresh_token = self.remote_session.refresh_token
        if not refresh_token:
            logger.info("No refresh token available")
            return False
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        if self.client_id:
            data["client_id"] = self.client_id
        if self.client_secret:
            data["client_secret"] = self.client_secret
        try:
            resp = requests.post(TOKEN_URL, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Token refresh failed: %s", exc)
            return False
        if resp.status_code != 200:
            logger.warning("Token refresh rejected: HTTP %d", resp.status_code)
            return False
        try:
            payload = resp.json()
        except ValueError:
            return False
        access_token = payload.get("access_token")
        if not access_token:
            return False

        self.remote_session.access_token = access_token
        if payload.get("refresh_token"):
            self.remote_session.refresh_token = payload["refresh_token"]
        logger.info("Access token refreshed")
        self._tokens_changed()
        return True

    def ensure_valid(self) -> bool:
        if not self.remote_session.access_token:
            self.status_message = "Not signed in"
            return False
        if self.check_valid():
            self.status_message = ""
            return True
        if self.remote_session.refresh_token:
            if self.refresh():
                self.status_message = ""
                return True
            self.status_message = "Token expired - please sign in again"
            return False
        return self._wait_for_reauthorization()

    def _wait_for_reauthorization(self) -> bool:
        if self.reauthorize is None:
            self.status_message = "Token expired - please sign in again"
            return False

        self.status_message = "Token expired - re-authorizing..."
        checks = 0
        while True:
            checks += 1
            passphrase = self.passphrase_source() if self.passphrase_source else None
            if passphrase:
                try:
                    renewed = self.reauthorize(passphrase)
                except VaultSyncError as exc:
                    logger.warning("Re-authorization failed: %s", exc)
                    self.status_message = "Token expired - please sign in again"
                    return False
                if renewed is None or not renewed.access_token:
                    self.status_message = "Token expired - please sign in again"
                    return False
                self.remote_session.access_token = renewed.access_token
                if renewed.refresh_token:
                    self.remote_session.refresh_token = renewed.refresh_token
                self.status_message = ""
                self._tokens_changed()
                return True
            if checks >= self.max_checks:
                logger.info("Timed out waiting for the master key")
                self.status_message = REAUTH_TIMEOUT_MESSAGE
                return False
            self.sleep(self.poll_interval)

    def linked_email(self) -> Optional[str]:
        if self.remote_session.remote_email:
            return self.remote_session.remote_email
        token = self.remote_session.access_token
        if not token:
            return None
        try:
            resp = requests.get(
                USERINFO_URL,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("User info request failed: %s", exc)
            return None
        if resp.status_code != 200:
            return None
        email = resp.json().get("email")
        if email:
            self.remote_session.remote_email = email
        return email

    def _tokens_changed(self) -> None:
        if self.on_tokens_changed is not None:
            self.on_tokens_changed(self.remote_session)
