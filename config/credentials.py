"""Credential storage, kept apart from the settings record.

Tokens live in ``credentials.json`` (mode 0600) next to the settings record,
with environment variables taking precedence. Nothing in here is ever
written into an export or into ``storage.json``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from storage.contracts import Credentials, TokenProvider

logger = logging.getLogger(__name__)

GITHUB_TOKEN_ENV = "NOTEVAULT_GITHUB_TOKEN"
_REMOTE_PREFIX = "remote:"


def remote_token_env(name: str) -> str:
    return f"NOTEVAULT_REMOTE_{name.upper().replace('-', '_')}_TOKEN"


class CredentialStore:
    """File-backed token store with environment overrides."""

    def __init__(self, config_dir: str | Path, env: Mapping[str, str] | None = None):
        self.config_dir = Path(config_dir)
        self.path = self.config_dir / "credentials.json"
        self._env = env if env is not None else os.environ

    def get_token(self, name: str = "github") -> str | None:
        env_key = GITHUB_TOKEN_ENV if name == "github" else remote_token_env(name.removeprefix(_REMOTE_PREFIX))
        env_value = (self._env.get(env_key) or "").strip()
        if env_value:
            return env_value
        return self._read().get(name)

    def save_token(self, token: str, name: str = "github") -> None:
        if not token:
            raise ValueError("Token is required")
        data = self._read()
        data[name] = token
        self._write(data)

    def delete_token(self, name: str = "github") -> None:
        data = self._read()
        if data.pop(name, None) is not None:
            self._write(data)

    def save_remote_token(self, remote: str, token: str) -> None:
        self.save_token(token, f"{_REMOTE_PREFIX}{remote}")

    def remote_tokens(self, remotes: list[str]) -> dict[str, str]:
        tokens: dict[str, str] = {}
        for remote in remotes:
            token = self.get_token(f"{_REMOTE_PREFIX}{remote}")
            if token:
                tokens[remote] = token
        return tokens

    def credentials(
        self,
        remotes: list[str] | None = None,
        token_provider: TokenProvider | None = None,
    ) -> Credentials:
        return Credentials(
            token=self.get_token("github"),
            token_provider=token_provider,
            remote_tokens=self.remote_tokens(remotes or []),
        )

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Invalid credentials file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise RuntimeError(f"Invalid credentials file {self.path}: expected JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        # @@@credentials-0600 - create with owner-only permissions before any secret hits the disk.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.chmod(self.path, 0o600)
        logger.debug("Saved %d credential(s) to %s", len(data), self.path)
