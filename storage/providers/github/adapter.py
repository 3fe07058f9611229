"""Remote storage adapter for a GitHub-style REST contents API.

Owns the per-path version-token cache and the optimistic-concurrency
write protocol: writes carry the last observed ``sha``, a mismatch is a
conflict, and ``force`` allows exactly one retry against the current sha.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from config.schema import GitHubSettings
from storage.codec import decode_content, encode_content
from storage.contracts import Credentials
from storage.errors import (
    AuthFailureError,
    ConflictError,
    NotConfiguredError,
    NotFoundError,
    RetryExhaustedError,
    StorageConfigError,
    StorageError,
)
from storage.models import HistoryEntry, ListEntry, ModeInfo, StoredFile, WriteResult
from storage.providers.github import _http

logger = logging.getLogger(__name__)

DEFAULT_SAVE_MESSAGE = "Update from notevault"


class GitHubStorageAdapter:
    """Storage adapter backed by a remote repository's contents API."""

    mode = "github"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self._settings: GitHubSettings | None = None
        self._credentials = Credentials()
        self._client: httpx.AsyncClient | None = None
        self._token_cache: dict[str, str] = {}
        self._configured = False

    # ==================== Lifecycle ====================

    async def configure(self, settings: Any, credentials: Credentials | None = None) -> None:
        try:
            parsed = settings if isinstance(settings, GitHubSettings) else GitHubSettings.model_validate(settings)
        except ValidationError as exc:
            raise StorageConfigError(f"Invalid GitHub settings: {exc}") from exc

        creds = credentials or Credentials()
        if parsed.auth_mode == "pat" and not creds.token:
            raise StorageConfigError("GitHub 'pat' mode requires a token")
        if parsed.auth_mode == "oauth" and creds.token_provider is None:
            raise StorageConfigError("GitHub 'oauth' mode requires a token provider")

        previous = self._settings
        if previous is not None and (previous.owner, previous.repo, previous.branch) != (
            parsed.owner,
            parsed.repo,
            parsed.branch,
        ):
            self._token_cache.clear()
        if self._client is not None and previous is not None and (
            previous.base_url != parsed.base_url or previous.timeout != parsed.timeout
        ):
            await self._client.aclose()
            self._client = None
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=parsed.base_url,
                timeout=parsed.timeout,
                headers={"Accept": _http.ACCEPT_HEADER},
                transport=self._transport,
            )

        self._settings = parsed
        self._credentials = creds
        self._configured = True
        logger.info(
            "GitHub storage configured (mode=%s, repo=%s/%s, branch=%s)",
            parsed.auth_mode,
            parsed.owner,
            parsed.repo,
            parsed.branch,
        )

    def is_configured(self) -> bool:
        return self._configured

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ==================== Contract ====================

    async def get_file(self, path: str) -> StoredFile | None:
        path = _normalize(path)
        data = await self._get_contents(path, ref=self._require_settings().branch, operation="get_file")
        if data is None:
            return None
        stored = self._to_stored_file(path, data)
        self._token_cache[path] = stored.version_token  # type: ignore[assignment]
        return stored

    async def put_file(
        self,
        path: str,
        content: str,
        message: str,
        expected_version_token: str | None = None,
        *,
        force: bool = False,
    ) -> WriteResult:
        path = _normalize(path)
        self._require_settings()
        token = expected_version_token
        if token is None and not force:
            token = self._token_cache.get(path)

        try:
            return await self._write(path, content, message, token)
        except ConflictError as exc:
            self._token_cache.pop(path, None)
            if not force:
                raise ConflictError(
                    f"CONFLICT: {path} was modified remotely since version {token or '<none>'}. "
                    "Reload the file and retry.",
                    path=path,
                ) from exc
            logger.warning("Conflict writing %s, retrying once against the current version", path)

        # @@@single-forced-retry - exactly one re-read and one resubmit; a second conflict is terminal.
        current = await self._current_token(path)
        try:
            return await self._write(path, content, message, current)
        except ConflictError as exc:
            self._token_cache.pop(path, None)
            raise RetryExhaustedError(
                f"Force save failed: {path} changed again during retry",
                path=path,
            ) from exc

    async def save_file(
        self,
        path: str,
        content: str,
        message: str = DEFAULT_SAVE_MESSAGE,
        force: bool = False,
    ) -> WriteResult:
        return await self.put_file(path, content, message, force=force)

    async def delete_file(
        self,
        path: str,
        message: str,
        expected_version_token: str | None = None,
    ) -> None:
        path = _normalize(path)
        settings = self._require_settings()
        token = expected_version_token or self._token_cache.get(path) or await self._current_token(path)
        if token is None:
            raise NotFoundError(f"Cannot delete {path}: file not found", path=path)
        try:
            await self._request(
                "DELETE",
                self._contents_url(path),
                path=path,
                operation="delete_file",
                json={"message": message, "sha": token, "branch": settings.branch},
            )
        except ConflictError:
            self._token_cache.pop(path, None)
            raise
        self._token_cache.pop(path, None)

    async def list_files(self, path: str = "") -> list[ListEntry]:
        path = _normalize(path)
        data = await self._get_contents(path, ref=self._require_settings().branch, operation="list_files")
        if not isinstance(data, list):
            return []
        return [
            ListEntry(
                path=item["path"],
                type="dir" if item.get("type") == "dir" else "file",
                version_token=item.get("sha"),
            )
            for item in data
        ]

    async def check_connection(self) -> bool:
        if not self._configured:
            return False
        try:
            await self._request("GET", self._repo_url(), path=None, operation="check_connection")
        except StorageError as exc:
            logger.warning("GitHub connection check failed: %s", exc)
            return False
        return True

    def get_mode_info(self) -> ModeInfo:
        is_pat = self._settings is None or self._settings.auth_mode == "pat"
        repo = f"{self._settings.owner}/{self._settings.repo}" if self._settings else "unconfigured"
        return ModeInfo(
            mode=self.mode,
            label="GitHub (PAT)" if is_pat else "GitHub (OAuth)",
            description="Sync through the GitHub contents API with atomic, sha-checked commits",
            features={
                "sync": True,
                "backup": True,
                "collaboration": True,
                "offline": False,
                "security": "medium" if is_pat else "high",
            },
            storage=f"GitHub ({repo})",
            capabilities=[
                "Optimistic concurrency on every write",
                "Commit history per file",
                "Branch creation",
                "Code search",
            ],
            limitations=(
                ["Long-lived token", "Manual revocation"]
                if is_pat
                else ["Requires an OAuth token service"]
            ),
        )

    # ==================== History & remote state ====================

    async def get_history(self, path: str | None = None, limit: int = 20) -> list[HistoryEntry]:
        settings = self._require_settings()
        params: dict[str, Any] = {"sha": settings.branch, "per_page": limit}
        if path:
            params["path"] = _normalize(path)
        response = await self._request(
            "GET", f"{self._repo_url()}/commits", path=path, operation="get_history", params=params
        )
        return [_commit_to_entry(item) for item in response.json()][:limit]

    async def get_commits(self, limit: int = 10) -> list[HistoryEntry]:
        return await self.get_history(None, limit)

    async def get_file_at_commit(self, path: str, version_id: str) -> StoredFile | None:
        path = _normalize(path)
        data = await self._get_contents(path, ref=version_id, operation="get_file_at_commit")
        if data is None:
            return None
        stored = self._to_stored_file(path, data)
        return StoredFile(path=stored.path, content=stored.content, version_token=version_id)

    async def get_file_size_at_commit(self, path: str, version_id: str) -> int | None:
        path = _normalize(path)
        data = await self._get_contents(path, ref=version_id, operation="get_file_size_at_commit")
        if not isinstance(data, dict):
            return None
        return int(data.get("size") or 0)

    async def has_remote_changes(self, path: str) -> bool:
        """Compare the cached token with the backend's current one.

        A detected change invalidates the cache entry so the next write
        re-reads instead of conflicting.
        """
        path = _normalize(path)
        cached = self._token_cache.get(path)
        if cached is None:
            return False
        current = await self._current_token(path)
        if current == cached:
            return False
        self._token_cache.pop(path, None)
        logger.info("Remote change detected for %s", path)
        return True

    def clear_cache(self, path: str | None = None) -> None:
        if path is None:
            self._token_cache.clear()
        else:
            self._token_cache.pop(_normalize(path), None)

    def cached_token(self, path: str) -> str | None:
        return self._token_cache.get(_normalize(path))

    # ==================== Extras ====================

    async def create_branch(self, name: str, from_branch: str | None = None) -> str:
        source = from_branch or self._require_settings().branch
        ref = await self._request(
            "GET",
            f"{self._repo_url()}/git/ref/heads/{quote(source, safe='/')}",
            path=None,
            operation="create_branch",
        )
        sha = ref.json()["object"]["sha"]
        await self._request(
            "POST",
            f"{self._repo_url()}/git/refs",
            path=None,
            operation="create_branch",
            json={"ref": f"refs/heads/{name}", "sha": sha},
        )
        logger.info("Branch %s created from %s", name, source)
        return sha

    async def search(self, query: str) -> list[ListEntry]:
        settings = self._require_settings()
        response = await self._request(
            "GET",
            "/search/code",
            path=None,
            operation="search",
            params={"q": f"{query} repo:{settings.owner}/{settings.repo}"},
        )
        return [
            ListEntry(path=item["path"], type="file", version_token=item.get("sha"))
            for item in response.json().get("items", [])
        ]

    # ==================== Internals ====================

    async def _write(self, path: str, content: str, message: str, token: str | None) -> WriteResult:
        body: dict[str, Any] = {
            "message": message,
            "content": encode_content(content),
            "branch": self._require_settings().branch,
        }
        # Absent sha means "create only if missing"; a present sha must match the current file.
        if token:
            body["sha"] = token
        response = await self._request("PUT", self._contents_url(path), path=path, operation="put_file", json=body)
        new_token = response.json()["content"]["sha"]
        self._token_cache[path] = new_token
        return WriteResult(version_token=new_token, path=path)

    async def _current_token(self, path: str) -> str | None:
        data = await self._get_contents(path, ref=self._require_settings().branch, operation="current_token")
        if not isinstance(data, dict):
            return None
        return data.get("sha")

    async def _get_contents(self, path: str, *, ref: str, operation: str) -> Any | None:
        try:
            response = await self._request(
                "GET", self._contents_url(path), path=path, operation=operation, params={"ref": ref}
            )
        except NotFoundError:
            return None
        return response.json()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        path: str | None,
        operation: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        self._require_settings()
        assert self._client is not None
        headers = {"Authorization": f"Bearer {await self._token()}"}
        return await _http.send(
            self._client, method, url, path=path, operation=operation, headers=headers, params=params, json=json
        )

    async def _token(self) -> str:
        settings = self._require_settings()
        if settings.auth_mode == "oauth":
            assert self._credentials.token_provider is not None
            try:
                return await self._credentials.token_provider()
            except Exception as exc:
                raise AuthFailureError("OAuth authentication failed. Please login again.") from exc
        if not self._credentials.token:
            raise AuthFailureError("No authentication token available")
        return self._credentials.token

    def _require_settings(self) -> GitHubSettings:
        if not self._configured or self._settings is None:
            raise NotConfiguredError("GitHub adapter not configured")
        return self._settings

    def _repo_url(self) -> str:
        settings = self._require_settings()
        return f"/repos/{quote(settings.owner)}/{quote(settings.repo)}"

    def _contents_url(self, path: str) -> str:
        suffix = f"/{quote(path, safe='/')}" if path else ""
        return f"{self._repo_url()}/contents{suffix}"

    def _to_stored_file(self, path: str, data: Any) -> StoredFile:
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            raise StorageError(f"{path} is not a file", path=path)
        return StoredFile(
            path=data.get("path", path),
            content=decode_content(data.get("content", ""), path=path),
            version_token=data["sha"],
        )


def _normalize(path: str) -> str:
    return path.strip().strip("/")


def _commit_to_entry(item: dict[str, Any]) -> HistoryEntry:
    commit = item.get("commit", {})
    author = commit.get("author") or {}
    parents = item.get("parents") or []
    return HistoryEntry(
        id=item["sha"],
        message=commit.get("message", ""),
        author=author.get("name", ""),
        email=author.get("email"),
        timestamp=author.get("date", ""),
        parent_id=parents[0]["sha"] if parents else None,
    )
