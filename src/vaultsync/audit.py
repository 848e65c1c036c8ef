"""
Operation log: saves, loads, sync outcomes and conflict decisions.

Entries are JSONL, one pydantic ``AuditEntry`` per line. The file is
capped; once it grows past ``max_entries`` the oldest lines are dropped.
Never log secrets or plaintext here.
"""

from __future__ import annotations

import json
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

AUDIT_LOG_NAME = "events.jsonl"
DEFAULT_MAX_ENTRIES = 100


class AuditEntry(BaseModel):
    """A single structured log entry."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)
    account: Optional[str] = None
    metadata: Optional[dict] = None


def _log_path(home: Path) -> Path:
    return Path(home).expanduser() / "logs" / AUDIT_LOG_NAME


def audit_event(
    home: Path,
    event_type: str,
    detail: str,
    account: Optional[str] = None,
    metadata: Optional[dict] = None,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> AuditEntry:
    """Append an event to the operation log.

    Args:
        home: Vault home directory.
        event_type: Event category (SAVE, LOAD, SYNC_UPLOAD, SYNC_DOWNLOAD,
            SYNC_CONFLICT, SYNC_ERROR, ...).
        detail: Human-readable description.
        account: Account the event concerns.
        metadata: Extra structured data.
        max_entries: Cap on retained lines.

    Returns:
        AuditEntry: The entry that was written.
    """
    log_file = _log_path(home)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    entry = AuditEntry(
        event_type=event_type,
        detail=detail,
        account=account,
        metadata=metadata,
    )

    lines: list[str] = []
    if log_file.exists():
        lines = [ln for ln in log_file.read_text().splitlines() if ln.strip()]
    lines.append(entry.model_dump_json())
    if len(lines) > max_entries:
        lines = lines[-max_entries:]

    tmp = log_file.with_suffix(".tmp")
    tmp.write_text("\n".join(lines) + "\n")
    tmp.rename(log_file)
    return entry


def read_events(home: Path, limit: int = 0) -> list[AuditEntry]:
    """Read the operation log, oldest first.

    Args:
        home: Vault home directory.
        limit: Maximum entries to return (0 = all, newest kept).
    """
    log_file = _log_path(home)
    if not log_file.exists():
        return []

    entries: list[AuditEntry] = []
    for line in log_file.read_text().splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(AuditEntry.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError):
            entries.append(AuditEntry(event_type="UNPARSEABLE", detail=line))

    if limit > 0:
        entries = entries[-limit:]
    return entries
