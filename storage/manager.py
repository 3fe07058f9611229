"""Storage manager: owns the one active adapter and exposes a uniform facade."""

from __future__ import annotations

import importlib
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from config.schema import StorageRecord
from storage.contracts import Credentials, StorageAdapter
from storage.errors import NotConfiguredError, StorageConfigError, UnsupportedOperationError
from storage.models import HistoryEntry, ListEntry, ModeInfo, StoredFile, WriteResult

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[], StorageAdapter]

# @@@adapter-registry - maps mode → (module path, class name); modules load only when the mode is used.
_ADAPTER_REGISTRY: dict[str, tuple[str, str]] = {
    "github":    ("storage.providers.github",    "GitHubStorageAdapter"),
    "local":     ("storage.providers.local",     "LocalStorageAdapter"),
    "local-git": ("storage.providers.local_git", "LocalGitStorageAdapter"),
}


def _registry_factory(mode: str) -> AdapterFactory:
    if mode not in _ADAPTER_REGISTRY:
        supported = ", ".join(_ADAPTER_REGISTRY)
        raise StorageConfigError(f"Unknown storage mode: {mode}. Supported modes: {supported}")
    mod_path, cls_name = _ADAPTER_REGISTRY[mode]
    return getattr(importlib.import_module(mod_path), cls_name)


class StorageManager:
    """Composition root for the active storage adapter.

    Exactly one adapter is active at a time; collaborators receive this
    manager (or the adapter itself) explicitly rather than looking it up.
    """

    def __init__(self, adapter_factories: Mapping[str, AdapterFactory] | None = None) -> None:
        self._factories = dict(adapter_factories or {})
        self._adapter: StorageAdapter | None = None
        self._record: StorageRecord | None = None

    @property
    def mode(self) -> str | None:
        return self._adapter.mode if self._adapter is not None else None

    @property
    def adapter(self) -> StorageAdapter:
        if self._adapter is None:
            raise NotConfiguredError("No storage mode configured")
        return self._adapter

    @property
    def record(self) -> StorageRecord | None:
        return self._record

    # ==================== Lifecycle ====================

    async def initialize(self, record: StorageRecord, credentials: Credentials | None = None) -> bool:
        adapter = self._build_adapter(record.storage_mode)
        await adapter.configure(record.active_settings(), credentials)
        await self._close(self._adapter)
        self._adapter = adapter
        self._record = record
        logger.info("Storage initialized in %s mode", record.storage_mode)
        return adapter.is_configured()

    async def switch_mode(
        self,
        mode: str,
        settings: Any = None,
        credentials: Credentials | None = None,
    ) -> ModeInfo:
        """Configure a new adapter; the previous one stays active if that fails."""
        previous = self._adapter
        adapter = self._build_adapter(mode)
        try:
            await adapter.configure(settings, credentials)
        except Exception:
            logger.error("Failed to switch to %s mode, keeping %s", mode, previous.mode if previous else "none")
            await self._close(adapter)
            raise
        self._adapter = adapter
        self._record = self._updated_record(mode, settings)
        if previous is not None and previous is not adapter:
            await self._close(previous)
        logger.info("Switched storage mode to %s", mode)
        return adapter.get_mode_info()

    async def aclose(self) -> None:
        await self._close(self._adapter)
        self._adapter = None

    # ==================== Delegation ====================

    def is_configured(self) -> bool:
        return self._adapter is not None and self._adapter.is_configured()

    async def get_file(self, path: str) -> StoredFile | None:
        return await self.adapter.get_file(path)

    async def put_file(
        self,
        path: str,
        content: str,
        message: str,
        expected_version_token: str | None = None,
        *,
        force: bool = False,
    ) -> WriteResult:
        return await self.adapter.put_file(path, content, message, expected_version_token, force=force)

    async def delete_file(self, path: str, message: str, expected_version_token: str | None = None) -> None:
        await self.adapter.delete_file(path, message, expected_version_token)

    async def list_files(self, path: str = "") -> list[ListEntry]:
        return await self.adapter.list_files(path)

    async def check_connection(self) -> bool:
        if self._adapter is None:
            return False
        return await self._adapter.check_connection()

    def get_mode_info(self) -> ModeInfo:
        if self._adapter is None:
            return ModeInfo(mode="none", label="Not configured", description="No storage mode selected")
        return self._adapter.get_mode_info()

    # ==================== Capability-gated ====================

    async def get_history(self, path: str | None = None, limit: int = 20) -> list[HistoryEntry]:
        return await self._capability("get_history")(path, limit)

    async def get_commits(self, limit: int = 10) -> list[HistoryEntry]:
        return await self._capability("get_commits")(limit)

    async def export_data(self) -> Any:
        if self.mode == "local-git":
            return await self._capability("export_bundle")()
        return await self._capability("export_data")()

    async def import_data(self, data: Any) -> int:
        if self.mode == "local-git":
            return await self._capability("import_bundle")(data)
        return await self._capability("import_data")(data)

    # ==================== JSON helpers ====================

    async def read_json(self, path: str) -> Any | None:
        stored = await self.get_file(path)
        if stored is None:
            return None
        return json.loads(stored.content)

    async def write_json(self, path: str, data: Any, message: str) -> WriteResult:
        return await self.put_file(path, json.dumps(data, indent=2, ensure_ascii=False), message)

    # ==================== Descriptors ====================

    def available_modes(self) -> list[ModeInfo]:
        return [self._build_adapter(mode).get_mode_info() for mode in _ADAPTER_REGISTRY]

    # ==================== Internals ====================

    def _build_adapter(self, mode: str) -> StorageAdapter:
        factory = self._factories.get(mode) or _registry_factory(mode)
        return factory()

    def _capability(self, name: str) -> Callable[..., Any]:
        adapter = self.adapter
        method = getattr(adapter, name, None)
        if not callable(method):
            raise UnsupportedOperationError(f"{name} is not available in {adapter.mode} mode")
        return method

    def _updated_record(self, mode: str, settings: Any) -> StorageRecord | None:
        section = {"github": "github", "local": "local", "local-git": "local_git"}[mode]
        base = self._record.model_dump() if self._record is not None else {}
        base["storage_mode"] = mode
        if settings is not None:
            base[section] = settings.model_dump() if hasattr(settings, "model_dump") else settings
        return StorageRecord.model_validate(base)

    @staticmethod
    async def _close(adapter: StorageAdapter | None) -> None:
        close_fn = getattr(adapter, "aclose", None)
        if callable(close_fn):
            await close_fn()
