"""
Mutation surface for the open vault.

Every edit goes through here so the save policy and the sync trigger
stay in one place:

    add_record          draft, saved now, no version bump, no sync
    update_record       draft marker cleared, debounced save + debounced sync
    delete_record       saved now, immediate sync (drafts: no sync)
    add/delete_label    saved now, immediate sync
    set_flag            debounced save + debounced sync
    toggle_visibility   debounced save + debounced sync
    search              read only: text and category filter
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Sequence

from .crypto import new_stable_id
from .models import Record, Vault
from .session import SessionContext

if TYPE_CHECKING:
    from .sync.engine import SyncReconciler

logger = logging.getLogger("vaultsync.editor")

EDITABLE_FIELDS = ("service", "login", "secret", "category", "note")


class VaultEditor:
    """Applies user edits to the session's vault.

    Args:
        session: Unlocked session.
        reconciler: Optional sync reconciler notified of changes.
    """

    def __init__(self, session: SessionContext, reconciler: Optional[SyncReconciler] = None):
        self.session = session
        self.reconciler = reconciler

    @property
    def vault(self) -> Vault:
        return self.session.require_vault()

    def _changed(self, immediate: bool = False) -> None:
        if self.reconciler is not None:
            self.reconciler.on_data_changed(immediate=immediate)

    def _record(self, index: int) -> Record:
        records = self.vault.records
        if index < 0 or index >= len(records):
            raise IndexError(f"No record at position {index + 1}")
        return records[index]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def add_record(self) -> Record:
        """Append an empty draft record."""
        record = Record(stable_id=new_stable_id(), draft=True)
        self.vault.records.append(record)
        self.session.persist()
        logger.debug("Draft record added")
        return record

    def update_record(self, index: int, **changes: str) -> Record:
        """Edit fields of a record.

        Raises:
            IndexError: No record at ``index``.
            ValueError: Unknown field name.
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown record field(s): {', '.join(sorted(unknown))}")
        record = self._record(index)
        for field, value in changes.items():
            setattr(record, field, value)
        if record.draft:
            record.draft = False
            logger.debug("Draft flag removed from record %d", index)
        self.session.save()
        if self.vault.has_syncable_records():
            self._changed()
        return record

    def create_record(self, **fields: str) -> Record:
        """Add a record and fill it in one go."""
        record = self.add_record()
        if any(value for value in fields.values()):
            self.update_record(len(self.vault.records) - 1, **fields)
        return record

    def delete_record(self, index: int) -> Record:
        """Remove a record. Deleting a draft never reaches the remote."""
        vault = self.vault
        record = self._record(index)
        was_draft = record.draft
        del vault.records[index]
        vault.visibility = {
            str(i if i < index else i - 1): shown
            for i, shown in ((int(k), v) for k, v in vault.visibility.items())
            if i != index
        }
        if was_draft:
            self.session.persist()
            logger.debug("Draft record deleted, skipping sync")
        else:
            self.session.save(debounce=0)
            self._changed(immediate=True)
        return record

    def search(self, text: str = "", labels: Sequence[str] = ()) -> list[int]:
        """Positions of records matching a search and a category filter.

        Args:
            text: Case-insensitive substring looked up in service, login,
                secret, category and note. Empty matches everything.
            labels: Categories to keep, compared case-insensitively.
                Empty keeps every category.
        """
        needle = text.lower()
        wanted = {label.lower() for label in labels}
        positions = []
        for index, record in enumerate(self.vault.records):
            if wanted and record.category.lower() not in wanted:
                continue
            if needle:
                fields = (record.service, record.login, record.secret, record.category, record.note)
                if not any(needle in field.lower() for field in fields):
                    continue
            positions.append(index)
        return positions

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def add_label(self, name: str) -> str:
        """Add a category label.

        Raises:
            ValueError: Empty name or a case-insensitive duplicate.
        """
        name = name.strip()
        if not name:
            raise ValueError("Label name is empty")
        if self.vault.find_label(name) is not None:
            raise ValueError(f"Label {name!r} already exists")
        self.vault.labels.append(name)
        self.session.save(debounce=0)
        self._changed(immediate=True)
        return name

    def delete_label(self, name: str) -> str:
        """Remove a label from the list. Records keep their category text.

        Raises:
            ValueError: No such label.
        """
        existing = self.vault.find_label(name)
        if existing is None:
            raise ValueError(f"Label {name!r} not found")
        self.vault.labels = [label for label in self.vault.labels if label != existing]
        self.session.save(debounce=0)
        self._changed(immediate=True)
        return existing

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_flag(self, name: str, value: bool) -> None:
        self.vault.ui_flags[name] = value
        self.session.save()
        if self.vault.has_syncable_records():
            self._changed()

    def toggle_visibility(self, index: int) -> bool:
        self._record(index)
        key = str(index)
        shown = not self.vault.visibility.get(key, False)
        self.vault.visibility[key] = shown
        self.session.save()
        if self.vault.has_syncable_records():
            self._changed()
        return shown

    def flush(self) -> None:
        """Write staged saves and run any sync waiting on its debounce."""
        self.session.store.flush(self.session.account_id)
        if self.reconciler is not None:
            self.reconciler.flush()
