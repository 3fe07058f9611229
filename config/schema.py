"""Storage configuration schema using Pydantic.

This module defines the single persisted configuration record:
- One settings group per storage mode (github, local, local-git)
- The selected storage mode
- Validators for owner/repo names, URLs and author identity

Credentials are deliberately absent; see config.credentials.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_DIR = Path.home() / ".notevault"
DEFAULT_BRANCH = "main"

StorageModeName = Literal["github", "local", "local-git"]

_REMOTE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_remote_name(name: str) -> str:
    """Reject names git would refuse or parse as an option."""
    if not _REMOTE_NAME.match(name) or name.endswith((".", ".lock")) or ".." in name:
        raise ValueError(f"Invalid remote name: {name!r}")
    return name


# ============================================================================
# Remote contents API
# ============================================================================


class GitHubSettings(BaseModel):
    """Settings for the remote contents API backend."""

    owner: str = Field(..., min_length=1, description="Repository owner (user or organisation)")
    repo: str = Field(..., min_length=1, description="Repository name")
    branch: str = Field(DEFAULT_BRANCH, min_length=1, description="Branch every read and write targets")
    base_url: str = Field("https://api.github.com", description="API root URL")
    auth_mode: Literal["pat", "oauth"] = Field("pat", description="Static token or OAuth token provider")
    timeout: float = Field(15.0, gt=0, description="Per-request timeout in seconds")

    @field_validator("owner", "repo")
    @classmethod
    def validate_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        if "/" in v:
            raise ValueError("must not contain '/'")
        return v

    @field_validator("branch")
    @classmethod
    def strip_branch(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v


# ============================================================================
# Local key-value store
# ============================================================================


class LocalSettings(BaseModel):
    """Settings for the local versioned store."""

    db_path: Path | None = Field(None, description="SQLite database path (default ~/.notevault/local.db)")

    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser() if self.db_path else DEFAULT_CONFIG_DIR / "local.db"


# ============================================================================
# Embedded git repository
# ============================================================================


class RemoteSettings(BaseModel):
    """A named remote the embedded repository may push to or pull from."""

    url: str = Field(..., min_length=1, description="Remote repository URL")


class LocalGitSettings(BaseModel):
    """Settings for the embedded git repository."""

    repo_dir: Path | None = Field(None, description="Working tree location (default ~/.notevault/repo)")
    author_name: str = Field("Notevault User", min_length=1, description="Commit author name")
    author_email: str = Field("user@notevault.local", description="Commit author email")
    default_branch: str = Field(DEFAULT_BRANCH, min_length=1, description="Branch created on first init")
    remotes: dict[str, RemoteSettings] = Field(default_factory=dict, description="Named remotes")
    auto_push: bool = Field(False, description="Push to 'origin' after every commit (best effort)")
    network_timeout: float = Field(60.0, gt=0, description="Timeout for push/pull in seconds")

    @field_validator("remotes")
    @classmethod
    def validate_remote_names(cls, v: dict[str, RemoteSettings]) -> dict[str, RemoteSettings]:
        for name in v:
            validate_remote_name(name)
        return v

    @field_validator("author_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("author_email must contain '@'")
        return v

    def resolved_repo_dir(self) -> Path:
        return Path(self.repo_dir).expanduser() if self.repo_dir else DEFAULT_CONFIG_DIR / "repo"


# ============================================================================
# Persisted record
# ============================================================================


class StorageRecord(BaseModel):
    """The single persisted, non-secret configuration record."""

    storage_mode: StorageModeName = Field(..., description="Active storage backend")
    github: GitHubSettings | None = None
    local: LocalSettings = Field(default_factory=LocalSettings)
    local_git: LocalGitSettings = Field(default_factory=LocalGitSettings)

    @model_validator(mode="after")
    def require_active_section(self) -> StorageRecord:
        if self.storage_mode == "github" and self.github is None:
            raise ValueError("storage_mode 'github' requires a github settings section")
        return self

    def active_settings(self) -> GitHubSettings | LocalSettings | LocalGitSettings:
        if self.storage_mode == "github":
            assert self.github is not None
            return self.github
        if self.storage_mode == "local":
            return self.local
        return self.local_git
