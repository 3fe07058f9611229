"""Storage adapter contract.

Every backend (``github``, ``local``, ``local-git``) satisfies this protocol.
Reads return ``None`` for absent files; writes return the new version token.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from storage.models import ListEntry, ModeInfo, StoredFile, WriteResult

TokenProvider = Callable[[], Awaitable[str]]


@dataclass
class Credentials:
    """Secrets handed to an adapter at configure time, never persisted with settings."""

    token: str | None = None
    token_provider: TokenProvider | None = None
    remote_tokens: dict[str, str] | None = None

    def __repr__(self) -> str:
        return "Credentials(<redacted>)"


@runtime_checkable
class StorageAdapter(Protocol):
    """Capability set every storage backend must implement."""

    mode: str

    async def configure(self, settings: Any, credentials: Credentials | None = None) -> None:
        """Validate and store backend settings. Safe to call again; raises StorageConfigError."""

    def is_configured(self) -> bool:
        """Pure predicate, no I/O."""

    async def get_file(self, path: str) -> StoredFile | None:
        """Return the file, or None when it does not exist."""

    async def put_file(
        self,
        path: str,
        content: str,
        message: str,
        expected_version_token: str | None = None,
        *,
        force: bool = False,
    ) -> WriteResult:
        """Create or update a file atomically."""

    async def delete_file(
        self,
        path: str,
        message: str,
        expected_version_token: str | None = None,
    ) -> None:
        """Delete a file; raises NotFoundError when no current version is known."""

    async def list_files(self, path: str = "") -> list[ListEntry]:
        """Directory-style listing; [] for empty or missing directories."""

    async def check_connection(self) -> bool:
        """Liveness probe without side effects."""

    def get_mode_info(self) -> ModeInfo:
        """Static capability description."""
