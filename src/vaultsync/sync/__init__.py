"""
Remote sync -- keep one encrypted vault file in step with the local vault.

The remote never sees plaintext. Every conflict goes to the human.

Backends: Google Drive, local filesystem folder.
The reconciler lives in ``vaultsync.sync.engine``.
"""

from .merge import dedupe_records, merge_labels, merge_records

__all__ = ["dedupe_records", "merge_labels", "merge_records"]
