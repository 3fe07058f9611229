"""Storage configuration loader.

Lookup order for the persisted record (first found wins):
1. ``storage.json`` in the config dir
2. ``storage.yaml`` / ``storage.yml`` in the config dir
3. Legacy bare ``storage-mode`` text file (mode only, default settings)

``NOTEVAULT_STORAGE_MODE`` overrides the mode of whatever record was found.
The config dir is ``NOTEVAULT_CONFIG_DIR`` or ``~/.notevault``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from config.schema import DEFAULT_CONFIG_DIR, StorageRecord

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "NOTEVAULT_CONFIG_DIR"
STORAGE_MODE_ENV = "NOTEVAULT_STORAGE_MODE"
_RECORD_FILES = ("storage.json", "storage.yaml", "storage.yml")
_LEGACY_MODE_FILE = "storage-mode"


class ConfigLoadError(Exception):
    pass


def resolve_config_dir(config_dir: str | Path | None = None, env: Mapping[str, str] | None = None) -> Path:
    env_map = env if env is not None else os.environ
    if config_dir is not None:
        return Path(config_dir).expanduser()
    raw = (env_map.get(CONFIG_DIR_ENV) or "").strip()
    return Path(raw).expanduser() if raw else DEFAULT_CONFIG_DIR


class StorageConfigLoader:
    """Load and save the persisted storage record."""

    def __init__(self, config_dir: str | Path | None = None, env: Mapping[str, str] | None = None):
        self._env = env if env is not None else os.environ
        self.config_dir = resolve_config_dir(config_dir, self._env)

    def load(self) -> StorageRecord | None:
        """Return the stored record, or None when nothing is configured yet."""
        raw = self._load_raw()
        override = (self._env.get(STORAGE_MODE_ENV) or "").strip().lower()
        if override:
            raw = dict(raw or {})
            raw["storage_mode"] = override
        if raw is None:
            return None
        try:
            return StorageRecord.model_validate(raw)
        except ValidationError as exc:
            raise ConfigLoadError(f"Invalid storage configuration in {self.config_dir}: {exc}") from exc

    def save(self, record: StorageRecord) -> Path:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.config_dir / "storage.json"
        payload = record.model_dump(mode="json", exclude_none=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        legacy = self.config_dir / _LEGACY_MODE_FILE
        if legacy.exists():
            legacy.unlink()
        logger.info("Saved storage configuration (mode=%s) to %s", record.storage_mode, path)
        return path

    def _load_raw(self) -> dict[str, Any] | None:
        for name in _RECORD_FILES:
            path = self.config_dir / name
            if not path.exists():
                continue
            data = self._parse_file(path)
            logger.debug("Loaded storage configuration from %s", path)
            return data
        return self._load_legacy()

    def _parse_file(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                if path.suffix == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigLoadError(f"Failed to parse {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigLoadError(f"Invalid storage configuration in {path}: expected a mapping")
        return data

    def _load_legacy(self) -> dict[str, Any] | None:
        path = self.config_dir / _LEGACY_MODE_FILE
        if not path.exists():
            return None
        mode = path.read_text(encoding="utf-8").strip()
        if not mode:
            return None
        logger.info("Loaded legacy storage mode %r from %s", mode, path)
        return {"storage_mode": mode}
