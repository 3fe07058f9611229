"""GitHub contents API storage provider."""

from .adapter import GitHubStorageAdapter

__all__ = ["GitHubStorageAdapter"]
