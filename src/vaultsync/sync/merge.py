"""
Record and label merging for the download path.

Pure functions: nothing here touches disk or network, and inputs are
never mutated. Records are matched by ``stable_id`` only; on a collision
the remote record wins. Merged output keeps local order, with records
and labels that exist only remotely appended after.
"""

from __future__ import annotations

from typing import Iterable

from ..crypto import new_stable_id
from ..models import Record


def ensure_stable_ids(records: Iterable[Record]) -> tuple[list[Record], int]:
    """Copy records, assigning a fresh stable id where one is missing.

    Returns:
        (records, number of ids assigned)
    """
    result: list[Record] = []
    assigned = 0
    for record in records:
        if record.stable_id:
            result.append(record.model_copy())
        else:
            result.append(record.model_copy(update={"stable_id": new_stable_id()}))
            assigned += 1
    return result, assigned


def dedupe_records(records: Iterable[Record]) -> tuple[list[Record], int]:
    """Keep the first record seen for each stable id.

    Records without an id are kept as they are.

    Returns:
        (records, number of duplicates dropped)
    """
    seen: set[str] = set()
    result: list[Record] = []
    removed = 0
    for record in records:
        if record.stable_id is None:
            result.append(record)
        elif record.stable_id in seen:
            removed += 1
        else:
            seen.add(record.stable_id)
            result.append(record)
    return result, removed


def merge_records(local: Iterable[Record], remote: Iterable[Record]) -> list[Record]:
    """Merge two record collections by stable id, remote winning.

    A remote record that collides with a local one replaces it in place;
    remote-only records are appended. Draft markers do not survive.
    """
    merged: dict[str, Record] = {}
    for side in (local, remote):
        prepared, _ = ensure_stable_ids(side)
        for record in prepared:
            record.draft = False
            merged[record.stable_id] = record
    return list(merged.values())


def merge_labels(local: Iterable[str], remote: Iterable[str]) -> list[str]:
    """Case-insensitive union, local first, first-seen casing kept.

    >>> merge_labels(["Work", "games"], ["WORK", "Email"])
    ['Work', 'games', 'Email']
    """
    seen: set[str] = set()
    merged: list[str] = []
    for label in list(local) + list(remote):
        key = label.lower()
        if key not in seen:
            seen.add(key)
            merged.append(label)
    return merged
