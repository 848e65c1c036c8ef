"""
Sync data models -- remote snapshot shape, conflict reports and results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteSnapshot(BaseModel):
    """The single object held by the remote store.

    Serialized with the camelCase keys the remote file has always used
    (``userId``, ``encryptedData``, ``encryptionSalt``, ``hashVersion``...).
    """

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="userId")
    ciphertext: str = Field(default="", alias="encryptedData")
    salt: str = Field(default="", alias="encryptionSalt")
    version: int = Field(default=0, ge=0)
    fingerprint: Optional[str] = Field(default=None, alias="hashVersion")
    modified_at: datetime = Field(default_factory=_utcnow, alias="modifiedAt")
    last_sync: datetime = Field(default_factory=_utcnow, alias="lastSync")

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


class RemoteMetadata(BaseModel):
    """Cheap existence/change check for the remote object."""

    modified_marker: str
    size_hint: Optional[int] = None
    checksum: Optional[str] = None


class ConflictKind(str, Enum):
    """Relationship between local and remote state."""

    NO_CONFLICT = "no_conflict"
    VERSION_CONFLICT = "version_conflict"
    CONTENT_CONFLICT = "content_conflict"


class SyncChoice(str, Enum):
    """The three answers a human can give to a conflict."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    CANCEL = "cancel"


class SyncPhase(str, Enum):
    """Where the reconciler currently is."""

    IDLE = "idle"
    CHECKING_REMOTE = "checking_remote"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    MERGING = "merging"
    AWAITING_USER_CHOICE = "awaiting_user_choice"


class SyncOutcome(str, Enum):
    """How a reconciliation attempt ended."""

    UP_TO_DATE = "up_to_date"
    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncStats(BaseModel):
    """Comparable numbers for one side of a conflict."""

    version: int
    records: int
    labels: int
    size_bytes: int
    modified_at: Optional[datetime] = None


class ConflictReport(BaseModel):
    """What the chooser is shown before deciding."""

    account_id: str
    kind: ConflictKind
    local: SyncStats
    remote: SyncStats


class SyncResult(BaseModel):
    """Outcome of one reconciliation attempt."""

    outcome: SyncOutcome
    kind: Optional[ConflictKind] = None
    choice: Optional[SyncChoice] = None
    local_version: Optional[int] = None
    remote_version: Optional[int] = None
    message: str = ""
    finished_at: datetime = Field(default_factory=_utcnow)
