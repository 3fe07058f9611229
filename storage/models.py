"""Shared storage domain models: provider-neutral data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

StorageMode = Literal["github", "local", "local-git"]
EntryType = Literal["file", "dir"]


@dataclass
class StoredFile:
    path: str
    content: str
    version_token: str | None
    modified: str | None = None


@dataclass
class WriteResult:
    version_token: str
    path: str


@dataclass
class ListEntry:
    path: str
    type: EntryType
    version_token: str | None = None


@dataclass
class HistoryEntry:
    """One version of a file (or of the repository), newest-first in listings."""

    id: str
    message: str
    author: str
    timestamp: str
    parent_id: str | None = None
    email: str | None = None
    action: str | None = None


@dataclass
class CommitDiff:
    """Metadata-level comparison of two commits."""

    base: HistoryEntry
    head: HistoryEntry
    changes: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class ModeInfo:
    """Static capability description consumed by configuration UIs."""

    mode: str
    label: str
    description: str
    features: dict[str, Any] = field(default_factory=dict)
    storage: str = ""
    capabilities: list[str] = field(default_factory=list)
    limitations: list[str] = field(default_factory=list)
