"""
Remote file gateways -- where the single vault file lives.

Each gateway knows how to locate (or create) the one remote object,
read its metadata cheaply, read its body, and overwrite it. There is no
server-side locking; the version and fingerprint inside the body are
the only concurrency control.

GDrive: Google Drive v3 REST API with bearer tokens.
Local: Plain filesystem folder. For USB drives, NAS, mounted drives.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import requests
from pydantic import ValidationError

from ..config import BackendType, VaultSyncConfig
from ..errors import (
    RemoteEmpty,
    RemoteError,
    RemoteNotFound,
    RemoteSchemaInvalid,
    RemoteTransportError,
    RemoteUnauthorized,
)
from .credentials import CredentialProvider
from .models import RemoteMetadata, RemoteSnapshot

logger = logging.getLogger("vaultsync.sync.backends")

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"


def parse_snapshot(body: str) -> RemoteSnapshot:
    """Turn a remote body into a snapshot.

    Raises:
        RemoteEmpty: Nothing stored yet, or a placeholder with no ciphertext.
        RemoteSchemaInvalid: Body is not a snapshot.
    """
    if not body or not body.strip():
        raise RemoteEmpty("Remote file is empty")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise RemoteSchemaInvalid(f"Remote file is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise RemoteSchemaInvalid("Remote file is not a JSON object")
    try:
        snapshot = RemoteSnapshot.model_validate(data)
    except ValidationError as exc:
        raise RemoteSchemaInvalid(f"Remote file has an invalid shape: {exc}") from exc
    if not snapshot.ciphertext.strip():
        raise RemoteEmpty("Remote file holds no encrypted data")
    return snapshot


class RemoteStore(ABC):
    """Abstract remote single-file store."""

    @abstractmethod
    def find_or_create(self, filename: str) -> str:
        """Locate the object by exact name, creating it if absent.

        Returns:
            The remote id to use for every other call.
        """

    @abstractmethod
    def fetch_metadata(self, remote_id: str) -> RemoteMetadata:
        """Cheap existence and change check.

        Raises:
            RemoteNotFound: The object is gone.
        """

    @abstractmethod
    def fetch_body(self, remote_id: str) -> RemoteSnapshot:
        """Download and parse the object.

        Raises:
            RemoteNotFound, RemoteEmpty, RemoteSchemaInvalid.
        """

    @abstractmethod
    def overwrite_body(self, remote_id: str, snapshot: RemoteSnapshot) -> None:
        """Replace the object's body with ``snapshot``."""

    def available(self) -> bool:
        """Check if this gateway is currently usable."""
        return True

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""


class DriveRemoteStore(RemoteStore):
    """Google Drive gateway.

    Every call carries the provider's bearer token. A 401 triggers
    exactly one ``refresh()`` and one retry; a transport failure or a
    5xx gets a single retry. Anything beyond that is surfaced.
    """

    def __init__(self, credentials: CredentialProvider, timeout: float = 30):
        self.credentials = credentials
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "gdrive"

    def available(self) -> bool:
        return bool(self.credentials.access_token())

    def _request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> requests.Response:
        refreshed = False
        retried = False
        while True:
            request_headers = {"Authorization": f"Bearer {self.credentials.access_token()}"}
            if headers:
                request_headers.update(headers)
            try:
                resp = requests.request(
                    method, url, headers=request_headers, timeout=self.timeout, **kwargs,
                )
            except requests.RequestException as exc:
                if not retried:
                    retried = True
                    logger.warning("Drive %s failed (%s), retrying once", method, exc)
                    continue
                raise RemoteTransportError(f"Drive {method} failed: {exc}") from exc

            if resp.status_code == 401:
                if not refreshed:
                    refreshed = True
                    logger.info("Drive returned 401, refreshing token")
                    if self.credentials.refresh():
                        continue
                raise RemoteUnauthorized(
                    "Token expired and could not be refreshed. Please sign in again."
                )
            if resp.status_code >= 500:
                if not retried:
                    retried = True
                    logger.warning("Drive %s returned %d, retrying once", method, resp.status_code)
                    continue
                raise RemoteTransportError(f"Drive {method}: HTTP {resp.status_code}")
            if resp.status_code == 404:
                raise RemoteNotFound("Remote file not found")
            if resp.status_code >= 400:
                raise RemoteError(f"Drive {method}: HTTP {resp.status_code} {resp.text}")
            return resp

    def find_or_create(self, filename: str) -> str:
        resp = self._request(
            "GET",
            f"{DRIVE_API}/files",
            params={
                "q": f"name='{filename}' and trashed=false",
                "fields": "files(id,name)",
            },
        )
        files = resp.json().get("files", [])
        if files:
            logger.debug("Found remote file %s", files[0]["id"])
            return files[0]["id"]

        resp = self._request(
            "POST",
            f"{DRIVE_API}/files",
            params={"fields": "id"},
            json={"name": filename, "mimeType": "application/json"},
        )
        file_id = resp.json()["id"]
        logger.info("Created remote file %s", file_id)
        return file_id

    def fetch_metadata(self, remote_id: str) -> RemoteMetadata:
        resp = self._request(
            "GET",
            f"{DRIVE_API}/files/{remote_id}",
            params={"fields": "modifiedTime,md5Checksum,size"},
        )
        data = resp.json()
        size = data.get("size")
        return RemoteMetadata(
            modified_marker=data["modifiedTime"],
            size_hint=int(size) if size is not None else None,
            checksum=data.get("md5Checksum"),
        )

    def fetch_body(self, remote_id: str) -> RemoteSnapshot:
        resp = self._request(
            "GET",
            f"{DRIVE_API}/files/{remote_id}",
            params={"alt": "media"},
        )
        return parse_snapshot(resp.text)

    def overwrite_body(self, remote_id: str, snapshot: RemoteSnapshot) -> None:
        self._request(
            "PATCH",
            f"{DRIVE_UPLOAD_API}/files/{remote_id}",
            params={"uploadType": "media"},
            headers={"Content-Type": "application/json"},
            data=snapshot.to_wire().encode("utf-8"),
        )


class LocalRemoteStore(RemoteStore):
    """A folder standing in for the cloud drive.

    A sidecar counter next to the file is bumped on every overwrite and
    serves as the modification marker.
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    @property
    def name(self) -> str:
        return "local"

    def available(self) -> bool:
        return self.root.is_dir() or self.root.parent.is_dir()

    def _path(self, remote_id: str) -> Path:
        return self.root / remote_id

    def _generation_path(self, remote_id: str) -> Path:
        return self.root / f".{remote_id}.generation"

    def _generation(self, remote_id: str) -> int:
        gen_path = self._generation_path(remote_id)
        if not gen_path.exists():
            return 0
        try:
            return int(gen_path.read_text().strip() or 0)
        except ValueError:
            return 0

    def find_or_create(self, filename: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(filename)
        if not path.exists():
            path.write_text("", encoding="utf-8")
            self._generation_path(filename).write_text("0")
            logger.info("Created remote file %s", path)
        return filename

    def fetch_metadata(self, remote_id: str) -> RemoteMetadata:
        path = self._path(remote_id)
        if not path.exists():
            raise RemoteNotFound(f"Remote file not found: {path}")
        return RemoteMetadata(
            modified_marker=str(self._generation(remote_id)),
            size_hint=path.stat().st_size,
        )

    def fetch_body(self, remote_id: str) -> RemoteSnapshot:
        path = self._path(remote_id)
        if not path.exists():
            raise RemoteNotFound(f"Remote file not found: {path}")
        try:
            body = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RemoteTransportError(f"Cannot read {path}: {exc}") from exc
        return parse_snapshot(body)

    def overwrite_body(self, remote_id: str, snapshot: RemoteSnapshot) -> None:
        path = self._path(remote_id)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_text(snapshot.to_wire(), encoding="utf-8")
            tmp_path.rename(path)
            self._generation_path(remote_id).write_text(
                str(self._generation(remote_id) + 1)
            )
        except OSError as exc:
            raise RemoteTransportError(f"Cannot write {path}: {exc}") from exc


def create_backend(
    config: VaultSyncConfig, credentials: CredentialProvider
) -> RemoteStore:
    """Factory function to create the configured gateway.

    Args:
        config: Loaded configuration.
        credentials: Provider used for authenticated backends.

    Returns:
        Instantiated RemoteStore.

    Raises:
        ValueError: If the backend is not supported or not configured.
    """
    if config.backend == BackendType.GDRIVE:
        return DriveRemoteStore(credentials, timeout=config.request_timeout)
    if config.backend == BackendType.LOCAL:
        if not config.local_remote_path:
            raise ValueError("local backend needs local_remote_path")
        return LocalRemoteStore(Path(config.local_remote_path))
    raise ValueError(f"Unsupported backend: {config.backend.value}")
