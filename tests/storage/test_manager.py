"""StorageManager selection, switching and capability gates."""

from __future__ import annotations

import pytest

from config.schema import LocalSettings, StorageRecord
from storage.bundle import LocalBackup
from storage.contracts import Credentials
from storage.errors import (
    NotConfiguredError,
    StorageConfigError,
    UnsupportedOperationError,
)
from storage.manager import StorageManager
from storage.providers.github import GitHubStorageAdapter
from storage.providers.local import LocalStorageAdapter
from tests.fakes.github import FakeGitHub


def _github_factories(fake: FakeGitHub) -> dict:
    return {"github": lambda: GitHubStorageAdapter(transport=fake.transport())}


def _local_record(tmp_path) -> StorageRecord:
    return StorageRecord(storage_mode="local", local=LocalSettings(db_path=tmp_path / "local.db"))


def test_unconfigured_manager():
    manager = StorageManager()
    assert manager.is_configured() is False
    assert manager.mode is None
    assert manager.get_mode_info().mode == "none"
    with pytest.raises(NotConfiguredError):
        _ = manager.adapter


@pytest.mark.asyncio
async def test_unconfigured_manager_operations_fail():
    manager = StorageManager()
    assert await manager.check_connection() is False
    with pytest.raises(NotConfiguredError):
        await manager.get_file("a.md")


@pytest.mark.asyncio
async def test_initialize_local_mode(tmp_path):
    manager = StorageManager()

    assert await manager.initialize(_local_record(tmp_path)) is True
    assert isinstance(manager.adapter, LocalStorageAdapter)
    assert manager.mode == "local"

    result = await manager.put_file("a.md", "x", "create")
    stored = await manager.get_file("a.md")
    assert stored.version_token == result.version_token
    assert [e.path for e in await manager.list_files("")] == ["a.md"]
    await manager.delete_file("a.md", "remove")
    assert await manager.get_file("a.md") is None


@pytest.mark.asyncio
async def test_initialize_github_mode_with_injected_transport():
    fake = FakeGitHub()
    manager = StorageManager(_github_factories(fake))
    record = StorageRecord(storage_mode="github", github={"owner": fake.owner, "repo": fake.repo})

    await manager.initialize(record, Credentials(token=fake.token))
    await manager.put_file("a.md", "x", "create")

    assert fake.files["a.md"] == b"x"
    assert len(await manager.get_commits(limit=5)) == 2
    assert await manager.check_connection() is True
    await manager.aclose()


@pytest.mark.asyncio
async def test_json_helpers(tmp_path):
    manager = StorageManager()
    await manager.initialize(_local_record(tmp_path))

    await manager.write_json("config.json", {"theme": "dark", "name": "café"}, "save config")
    stored = await manager.get_file("config.json")

    assert stored.content == '{\n  "theme": "dark",\n  "name": "café"\n}'
    assert await manager.read_json("config.json") == {"theme": "dark", "name": "café"}
    assert await manager.read_json("missing.json") is None


@pytest.mark.asyncio
async def test_switch_mode_replaces_adapter(tmp_path):
    manager = StorageManager()
    await manager.initialize(_local_record(tmp_path))

    info = await manager.switch_mode("local", {"db_path": str(tmp_path / "other.db")})

    assert info.mode == "local"
    assert manager.record.local.db_path == tmp_path / "other.db"
    assert await manager.get_file("a.md") is None


@pytest.mark.asyncio
async def test_failed_switch_keeps_previous_adapter(tmp_path):
    fake = FakeGitHub()
    manager = StorageManager(_github_factories(fake))
    await manager.initialize(_local_record(tmp_path))
    await manager.put_file("kept.md", "still here", "m")
    previous = manager.adapter

    with pytest.raises(StorageConfigError):
        await manager.switch_mode("github", {"owner": fake.owner, "repo": fake.repo}, Credentials())

    assert manager.adapter is previous
    assert manager.mode == "local"
    assert (await manager.get_file("kept.md")).content == "still here"


@pytest.mark.asyncio
async def test_unknown_mode_rejected(tmp_path):
    manager = StorageManager()
    with pytest.raises(StorageConfigError, match="Unknown storage mode"):
        await manager.switch_mode("dropbox", {})


@pytest.mark.asyncio
async def test_capability_gates_local_mode(tmp_path):
    manager = StorageManager()
    await manager.initialize(_local_record(tmp_path))
    await manager.put_file("a.md", "x", "create")

    backup = await manager.export_data()
    assert isinstance(backup, LocalBackup)
    assert await manager.import_data(backup) == 1
    assert len(await manager.get_history("a.md")) == 2
    with pytest.raises(UnsupportedOperationError):
        await manager.get_commits()


@pytest.mark.asyncio
async def test_capability_gates_github_mode():
    fake = FakeGitHub()
    manager = StorageManager(_github_factories(fake))
    await manager.switch_mode("github", {"owner": fake.owner, "repo": fake.repo}, Credentials(token=fake.token))

    with pytest.raises(UnsupportedOperationError):
        await manager.export_data()
    with pytest.raises(UnsupportedOperationError):
        await manager.import_data({"version": 1, "files": []})
    assert await manager.get_history() != []


def test_available_modes():
    modes = [info.mode for info in StorageManager().available_modes()]
    assert modes == ["github", "local", "local-git"]
