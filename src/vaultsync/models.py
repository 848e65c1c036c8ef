"""
Vault data models: what lives inside the ciphertext, and the plain
metadata cached next to it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_LABELS = ["Games", "Email", "Banks", "Social Networks", "Work", "Misc"]


class LoginType(str, Enum):
    """How the account was signed in."""

    LOCAL = "Local"
    REMOTE = "Remote"


class Record(BaseModel):
    """One credential entry.

    ``stable_id`` is the only identity used for merge and dedup.
    ``draft`` marks a freshly added, still-empty row; it lives only in
    memory and is never serialized.
    """

    service: str = ""
    login: str = ""
    secret: str = ""
    category: str = ""
    note: str = ""
    stable_id: Optional[str] = None
    draft: bool = Field(default=False, exclude=True)

    def is_blank(self) -> bool:
        """True when service, login and secret are all empty."""
        return not any(
            value.strip() for value in (self.service, self.login, self.secret)
        )


class RemoteSession(BaseModel):
    """Remote-session tokens, stored only inside the encrypted vault."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    remote_file_id: Optional[str] = None
    remote_email: Optional[str] = None


class Vault(BaseModel):
    """The decrypted application state of one account."""

    account_id: str
    login_type: LoginType = LoginType.LOCAL
    labels: list[str] = Field(default_factory=lambda: list(DEFAULT_LABELS))
    records: list[Record] = Field(default_factory=list)
    visibility: dict[str, bool] = Field(default_factory=dict)
    ui_flags: dict[str, bool] = Field(default_factory=dict)
    remote_session: Optional[RemoteSession] = None
    version: int = Field(default=0, ge=0)
    modified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def has_syncable_records(self) -> bool:
        """Whether any record carries real data (drafts and blanks excluded)."""
        return any(not r.draft and not r.is_blank() for r in self.records)

    def find_label(self, name: str) -> Optional[str]:
        """Case-insensitive label lookup, returns the stored casing."""
        lowered = name.lower()
        for label in self.labels:
            if label.lower() == lowered:
                return label
        return None


class AccountMeta(BaseModel):
    """Unencrypted per-account metadata kept next to the ciphertext.

    ``version`` mirrors the encrypted copy for cheap comparison. The
    ``last_remote_*`` pair is the cached last known remote state.
    """

    account_id: str
    salt: Optional[str] = None
    version: int = Field(default=0, ge=0)
    fingerprint: Optional[str] = None
    last_remote_modified: Optional[str] = None
    last_remote_fingerprint: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LoadedVault(BaseModel):
    """Result of AccountStore.load."""

    vault: Vault
    version: int
    migrated_ids: int = 0
    duplicates_removed: int = 0
