"""Tests for config.schema module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from config.schema import (
    DEFAULT_CONFIG_DIR,
    GitHubSettings,
    LocalGitSettings,
    LocalSettings,
    StorageRecord,
)


class TestGitHubSettings:
    """Tests for GitHubSettings."""

    def test_defaults(self):
        settings = GitHubSettings(owner="octo", repo="notes")
        assert settings.branch == "main"
        assert settings.base_url == "https://api.github.com"
        assert settings.auth_mode == "pat"
        assert settings.timeout == 15.0

    def test_names_are_stripped(self):
        settings = GitHubSettings(owner="  octo ", repo=" notes", branch="/dev/")
        assert settings.owner == "octo"
        assert settings.repo == "notes"
        assert settings.branch == "dev"

    def test_rejects_blank_or_slashed_names(self):
        with pytest.raises(ValidationError):
            GitHubSettings(owner="   ", repo="notes")
        with pytest.raises(ValidationError):
            GitHubSettings(owner="octo/notes", repo="notes")

    def test_base_url_normalized(self):
        settings = GitHubSettings(owner="o", repo="r", base_url="https://ghe.example.com/api/v3/")
        assert settings.base_url == "https://ghe.example.com/api/v3"

    def test_base_url_must_be_http(self):
        with pytest.raises(ValidationError):
            GitHubSettings(owner="o", repo="r", base_url="ftp://example.com")

    def test_auth_mode_is_closed_set(self):
        with pytest.raises(ValidationError):
            GitHubSettings(owner="o", repo="r", auth_mode="password")

    def test_timeout_positive(self):
        with pytest.raises(ValidationError):
            GitHubSettings(owner="o", repo="r", timeout=0)


class TestLocalSettings:
    """Tests for LocalSettings and LocalGitSettings paths."""

    def test_default_db_path(self):
        assert LocalSettings().resolved_db_path() == DEFAULT_CONFIG_DIR / "local.db"

    def test_explicit_db_path(self, tmp_path):
        assert LocalSettings(db_path=tmp_path / "x.db").resolved_db_path() == tmp_path / "x.db"

    def test_default_repo_dir(self):
        assert LocalGitSettings().resolved_repo_dir() == DEFAULT_CONFIG_DIR / "repo"

    def test_author_email_requires_at(self):
        with pytest.raises(ValidationError):
            LocalGitSettings(author_email="nobody")

    def test_remotes_parsed(self):
        settings = LocalGitSettings(remotes={"origin": {"url": "https://example.com/r.git"}})
        assert settings.remotes["origin"].url == "https://example.com/r.git"

    @pytest.mark.parametrize("name", ["bad name", "-upload", "a..b", "origin.lock", ""])
    def test_invalid_remote_names_rejected(self, name):
        with pytest.raises(ValidationError):
            LocalGitSettings(remotes={name: {"url": "https://example.com/r.git"}})
        assert settings.auto_push is False


class TestStorageRecord:
    """Tests for StorageRecord."""

    def test_local_mode_uses_defaults(self):
        record = StorageRecord(storage_mode="local")
        assert isinstance(record.active_settings(), LocalSettings)

    def test_local_git_mode(self):
        record = StorageRecord(storage_mode="local-git", local_git={"repo_dir": "/tmp/r"})
        active = record.active_settings()
        assert isinstance(active, LocalGitSettings)
        assert active.repo_dir == Path("/tmp/r")

    def test_github_mode_requires_section(self):
        with pytest.raises(ValidationError, match="github"):
            StorageRecord(storage_mode="github")

    def test_github_mode(self):
        record = StorageRecord(storage_mode="github", github={"owner": "o", "repo": "r"})
        assert record.active_settings().owner == "o"

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            StorageRecord(storage_mode="dropbox")

    def test_record_has_no_secret_fields(self):
        dumped = StorageRecord(storage_mode="github", github={"owner": "o", "repo": "r"}).model_dump()
        assert "token" not in str(dumped).lower()
