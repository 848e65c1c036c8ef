"""
Configuration for vaultsync, read from ``<home>/config.yaml``.

A broken or missing file never stops the vault from opening: parse
errors are logged and the defaults are used instead.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger("vaultsync.config")

CONFIG_FILENAME = "config.yaml"


class BackendType(str, Enum):
    """Supported remote-file backends."""

    GDRIVE = "gdrive"
    LOCAL = "local"
    NONE = "none"


class VaultSyncConfig(BaseModel):
    """Tunables for the store, the reconciler and the remote gateway."""

    save_debounce_seconds: float = Field(default=0.5, ge=0)
    sync_debounce_seconds: float = Field(default=3.0, ge=0)
    remote_filename: str = "password_manager_data.json"
    backend: BackendType = BackendType.NONE
    local_remote_path: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    request_timeout: float = Field(default=30, gt=0)
    reauth_max_checks: int = Field(default=120, ge=0)
    reauth_poll_interval: float = Field(default=0.5, ge=0)
    audit_max_entries: int = Field(default=100, ge=1)


def load_config(home: Path) -> VaultSyncConfig:
    """Load configuration from disk, falling back to defaults."""
    config_file = Path(home).expanduser() / CONFIG_FILENAME
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
            return VaultSyncConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
    return VaultSyncConfig()


def save_config(home: Path, config: VaultSyncConfig) -> Path:
    """Persist configuration to ``<home>/config.yaml``."""
    home = Path(home).expanduser()
    home.mkdir(parents=True, exist_ok=True)
    config_file = home / CONFIG_FILENAME
    data = config.model_dump(mode="json")
    config_file.write_text(yaml.dump(data, default_flow_style=False))
    return config_file
