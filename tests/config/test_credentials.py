"""Tests for config.credentials module."""

import json
import os
import stat

import pytest

from config.credentials import CredentialStore, remote_token_env


class TestCredentialStore:
    def test_missing_file_means_no_token(self, tmp_path):
        assert CredentialStore(tmp_path, env={}).get_token() is None

    def test_save_and_read_token(self, tmp_path):
        store = CredentialStore(tmp_path, env={})
        store.save_token("ghp_secret")
        assert store.get_token() == "ghp_secret"

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_file_is_owner_only(self, tmp_path):
        CredentialStore(tmp_path, env={}).save_token("ghp_secret")
        mode = stat.S_IMODE((tmp_path / "credentials.json").stat().st_mode)
        assert mode == 0o600

    def test_env_takes_precedence(self, tmp_path):
        CredentialStore(tmp_path, env={}).save_token("from-file")
        store = CredentialStore(tmp_path, env={"NOTEVAULT_GITHUB_TOKEN": "from-env"})
        assert store.get_token() == "from-env"

    def test_delete_token(self, tmp_path):
        store = CredentialStore(tmp_path, env={})
        store.save_token("x")
        store.delete_token()
        assert store.get_token() is None

    def test_empty_token_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            CredentialStore(tmp_path, env={}).save_token("")

    def test_remote_tokens(self, tmp_path):
        store = CredentialStore(tmp_path, env={remote_token_env("backup-host"): "env-token"})
        store.save_remote_token("origin", "file-token")

        assert store.remote_tokens(["origin", "backup-host", "unknown"]) == {
            "origin": "file-token",
            "backup-host": "env-token",
        }

    def test_credentials_bundle(self, tmp_path):
        store = CredentialStore(tmp_path, env={})
        store.save_token("gh")
        store.save_remote_token("origin", "rt")

        creds = store.credentials(remotes=["origin"])

        assert creds.token == "gh"
        assert creds.remote_tokens == {"origin": "rt"}
        assert "gh" not in repr(creds)

    def test_corrupt_file_fails_loud(self, tmp_path):
        (tmp_path / "credentials.json").write_text("{oops", encoding="utf-8")
        with pytest.raises(RuntimeError, match="Invalid credentials file"):
            CredentialStore(tmp_path, env={}).get_token()

    def test_file_layout(self, tmp_path):
        store = CredentialStore(tmp_path, env={})
        store.save_token("gh")
        store.save_remote_token("origin", "rt")
        data = json.loads((tmp_path / "credentials.json").read_text(encoding="utf-8"))
        assert data == {"github": "gh", "remote:origin": "rt"}


def test_remote_token_env_name():
    assert remote_token_env("backup-host") == "NOTEVAULT_REMOTE_BACKUP_HOST_TOKEN"
