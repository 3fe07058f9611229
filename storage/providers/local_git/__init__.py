"""Embedded git repository storage provider."""

from .adapter import LocalGitStorageAdapter

__all__ = ["LocalGitStorageAdapter"]
