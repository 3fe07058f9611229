"""Configuration management for notevault storage."""

from .schema import GitHubSettings, LocalGitSettings, LocalSettings, RemoteSettings, StorageRecord

__all__ = ["GitHubSettings", "LocalGitSettings", "LocalSettings", "RemoteSettings", "StorageRecord"]
