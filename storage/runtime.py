"""Runtime wiring: persisted record + credentials -> configured StorageManager."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from config.credentials import CredentialStore
from config.loader import StorageConfigLoader
from storage.contracts import TokenProvider
from storage.manager import AdapterFactory, StorageManager

logger = logging.getLogger(__name__)


async def build_storage_manager(
    config_dir: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    *,
    token_provider: TokenProvider | None = None,
    adapter_factories: Mapping[str, AdapterFactory] | None = None,
) -> StorageManager:
    """Build a storage manager from the persisted record and credential store.

    Returns an unconfigured manager when no record exists yet; the caller is
    expected to run its setup flow and call ``switch_mode``.
    """
    env_map = env if env is not None else os.environ
    loader = StorageConfigLoader(config_dir, env_map)
    manager = StorageManager(adapter_factories)

    record = loader.load()
    if record is None:
        logger.info("No storage configuration found in %s", loader.config_dir)
        return manager

    # @@@credentials-apart - secrets come from the credential store, never from the record.
    store = CredentialStore(loader.config_dir, env_map)
    credentials = store.credentials(
        remotes=list(record.local_git.remotes) if record.storage_mode == "local-git" else None,
        token_provider=token_provider,
    )
    await manager.initialize(record, credentials)
    return manager
