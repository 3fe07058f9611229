"""Local SQLite storage provider."""

from .adapter import LocalStorageAdapter

__all__ = ["LocalStorageAdapter"]
