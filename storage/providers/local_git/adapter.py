"""Embedded git storage adapter.

Keeps a real git repository in a local directory. Every write or delete
is staged and committed with the configured author; the commit id is the
version token. The repository is single-writer, so there are no
optimistic-concurrency conflicts. Push/pull are optional and never gate
local writes.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from config.schema import LocalGitSettings, validate_remote_name
from storage.bundle import BundleAuthor, BundleFile, BundleHistoryEntry, GitBundle, parse_envelope
from storage.codec import encode_content
from storage.contracts import Credentials
from storage.errors import (
    ContentEncodingError,
    GitCommandError,
    NotConfiguredError,
    NotFoundError,
    StorageConfigError,
    StorageError,
    TransportFailureError,
)
from storage.models import CommitDiff, HistoryEntry, ListEntry, ModeInfo, StoredFile, WriteResult
from storage.providers.local_git._git import GitRunner

logger = logging.getLogger(__name__)

README_CONTENT = "# Notevault - Knowledge Base\n\nInitialized with Local Git mode.\n"
EXPORT_HISTORY_LIMIT = 1000

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = "%H%x1f%P%x1f%an%x1f%ae%x1f%aI%x1f%B%x1e"


class LocalGitStorageAdapter:
    """Storage adapter backed by a git working tree on local disk."""

    mode = "local-git"

    def __init__(self) -> None:
        self._settings: LocalGitSettings | None = None
        self._git: GitRunner | None = None
        self._remote_tokens: dict[str, str] = {}
        self._configured = False

    # ==================== Lifecycle ====================

    async def configure(self, settings: Any, credentials: Credentials | None = None) -> None:
        parsed = self._parse_settings(settings)
        repo_dir = parsed.resolved_repo_dir()
        git = GitRunner(repo_dir, parsed.author_name, parsed.author_email)
        # @@@commit-on-success - nothing on self changes until the repository and its remotes are ready.
        try:
            await self._init_repository(git, parsed)
            for name, remote in parsed.remotes.items():
                await self._set_remote(git, name, remote.url)
        except (GitCommandError, OSError) as exc:
            raise StorageConfigError(f"Cannot prepare git repository at {repo_dir}: {exc}") from exc

        tokens = dict(self._remote_tokens)
        if credentials and credentials.remote_tokens:
            tokens.update(credentials.remote_tokens)
        self._activate(parsed, git, tokens)
        logger.info("Local git storage configured at %s (author=%s)", repo_dir, parsed.author_name)

    async def clone(self, url: str, token: str | None = None, settings: Any = None) -> None:
        """Clone ``url`` into an empty working tree and use it as the repository."""
        parsed = self._parse_settings(settings) if settings is not None else self._require_settings()
        repo_dir = parsed.resolved_repo_dir()
        if repo_dir.exists() and (not repo_dir.is_dir() or any(repo_dir.iterdir())):
            raise StorageConfigError(f"Cannot clone into {repo_dir}: directory is not empty")

        git = GitRunner(repo_dir, parsed.author_name, parsed.author_email)
        repo_dir.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s into %s", url, repo_dir)
        try:
            await git.run(
                "clone", "-q", "--", url, str(repo_dir),
                cwd=repo_dir.parent,
                timeout=parsed.network_timeout,
                extra_env=_basic_auth_env(token),
            )
        except GitCommandError as exc:
            raise TransportFailureError(f"git clone from {url} failed: {exc.stderr.strip()}") from exc

        tokens = dict(self._remote_tokens)
        if token:
            tokens["origin"] = token
        self._activate(parsed, git, tokens)
        logger.info("Clone complete")

    def _activate(self, settings: LocalGitSettings, git: GitRunner, tokens: dict[str, str]) -> None:
        self._settings = settings
        self._git = git
        self._remote_tokens = tokens
        self._configured = True

    @staticmethod
    def _parse_settings(settings: Any) -> LocalGitSettings:
        try:
            return settings if isinstance(settings, LocalGitSettings) else LocalGitSettings.model_validate(settings or {})
        except ValidationError as exc:
            raise StorageConfigError(f"Invalid local-git settings: {exc}") from exc

    def is_configured(self) -> bool:
        return self._configured

    async def _init_repository(self, git: GitRunner, settings: LocalGitSettings) -> None:
        repo_dir = git.repo_dir
        # @@@repo-detect-by-metadata - an existing .git directory means reuse, regardless of any stored flag.
        if (repo_dir / ".git").is_dir():
            logger.info("Existing git repository found at %s", repo_dir)
            return

        logger.info("Initializing new git repository at %s", repo_dir)
        repo_dir.mkdir(parents=True, exist_ok=True)
        await git.run("init", "-q")
        await git.run("symbolic-ref", "HEAD", f"refs/heads/{settings.default_branch}")
        readme = repo_dir / "README.md"
        if not readme.exists():
            await asyncio.to_thread(readme.write_bytes, README_CONTENT.encode("utf-8"))
        await git.run("add", "--", "README.md")
        await git.run("commit", "-q", "--allow-empty", "-m", "Initial commit")

    # ==================== Contract ====================

    async def get_file(self, path: str) -> StoredFile | None:
        rel, target = self._resolve(path)
        if not target.is_file():
            return None
        raw = await asyncio.to_thread(target.read_bytes)
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ContentEncodingError(f"{rel} is not valid UTF-8 text", path=rel) from exc
        return StoredFile(path=rel, content=content, version_token=await self._path_token(rel))

    async def put_file(
        self,
        path: str,
        content: str,
        message: str,
        expected_version_token: str | None = None,
        *,
        force: bool = False,
    ) -> WriteResult:
        git = self._require_git()
        rel, target = self._resolve(path)
        if not rel:
            raise StorageError("Cannot write to the repository root", path=path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, content.encode("utf-8"))
        await git.run("add", "--", rel)
        commit = await self._commit(message or f"Update {rel}")
        await self._auto_push()
        return WriteResult(version_token=commit, path=rel)

    async def delete_file(
        self,
        path: str,
        message: str,
        expected_version_token: str | None = None,
    ) -> None:
        git = self._require_git()
        rel, target = self._resolve(path)
        if not rel or not target.is_file():
            raise NotFoundError(f"Cannot delete {path}: file not found", path=path)
        tracked, _, _ = await git.run("ls-files", "--error-unmatch", "--", rel, check=False)
        if tracked == 0:
            await git.run("rm", "-q", "-f", "--", rel)
        else:
            await asyncio.to_thread(target.unlink)
        await self._commit(message or f"Delete {rel}")
        await self._auto_push()

    async def list_files(self, path: str = "") -> list[ListEntry]:
        rel, target = self._resolve(path)
        if not target.is_dir():
            return []
        entries: list[ListEntry] = []
        for child in sorted(target.iterdir(), key=lambda p: p.name):
            if child.name == ".git":
                continue
            child_rel = f"{rel}/{child.name}" if rel else child.name
            entries.append(ListEntry(path=child_rel, type="dir" if child.is_dir() else "file"))
        return entries

    async def check_connection(self) -> bool:
        return self._configured and self._settings is not None and (
            self._settings.resolved_repo_dir() / ".git"
        ).is_dir()

    def get_mode_info(self) -> ModeInfo:
        return ModeInfo(
            mode=self.mode,
            label="Local Git (Offline)",
            description="Local storage in a real git repository (commits, branches, history)",
            features={
                "sync": False,
                "backup": True,
                "collaboration": False,
                "offline": True,
                "git": True,
                "privacy": True,
            },
            storage="Local git working tree",
            capabilities=[
                "Real git repository",
                "Commits with author and date",
                "Branches",
                "Full history (git log)",
                "Diff between versions",
                "Optional push/pull",
                "Bundle export",
            ],
            limitations=[
                "No automatic multi-device sync",
                "Manual backup recommended",
            ],
        )

    # ==================== History ====================

    async def get_history(self, path: str | None = None, limit: int = 20) -> list[HistoryEntry]:
        git = self._require_git()
        args = ["log", f"-n{limit}", f"--format={_LOG_FORMAT}"]
        if path:
            rel, _ = self._resolve(path)
            args += ["--", rel]
        return _parse_log(await git.output(*args))

    async def get_file_at_commit(self, path: str, version_id: str) -> StoredFile | None:
        git = self._require_git()
        rel, _ = self._resolve(path)
        commit = await self._commit_id(version_id)
        if commit is None:
            return None
        exists, _, _ = await git.run("cat-file", "-e", f"{commit}:{rel}", check=False)
        if exists != 0:
            return None
        content = await git.output("show", f"{commit}:{rel}")
        return StoredFile(path=rel, content=content, version_token=version_id)

    async def get_file_size_at_commit(self, path: str, version_id: str) -> int | None:
        git = self._require_git()
        rel, _ = self._resolve(path)
        commit = await self._commit_id(version_id)
        if commit is None:
            return None
        rc, out, _ = await git.run("cat-file", "-s", f"{commit}:{rel}", check=False)
        return int(out.strip()) if rc == 0 else None

    async def diff(self, base: str, head: str) -> CommitDiff:
        """Metadata-level diff: both commits plus the list of changed paths."""
        git = self._require_git()
        base_entry = await self._read_commit(base)
        head_entry = await self._read_commit(head)
        changes: list[tuple[str, str]] = []
        for line in (await git.output("diff", "--name-status", base_entry.id, head_entry.id, "--")).splitlines():
            parts = line.split("\t")
            if len(parts) >= 2:
                changes.append((parts[0][:1], parts[-1]))
        return CommitDiff(base=base_entry, head=head_entry, changes=changes)

    async def status(self) -> dict[str, list[str]]:
        git = self._require_git()
        result: dict[str, list[str]] = {"modified": [], "staged": [], "untracked": []}
        for line in (await git.output("status", "--porcelain=v1", "-uall")).splitlines():
            if len(line) < 4:
                continue
            index, worktree, filepath = line[0], line[1], line[3:]
            if index == "?" and worktree == "?":
                result["untracked"].append(filepath)
                continue
            if index != " ":
                result["staged"].append(filepath)
            if worktree != " ":
                result["modified"].append(filepath)
        return result

    # ==================== Branches ====================

    async def create_branch(self, name: str, start_point: str | None = None) -> None:
        git = self._require_git()
        if not name or name.startswith("-"):
            raise StorageError(f"Invalid branch name: {name!r}")
        args = ["branch", name]
        if start_point:
            commit = await self._commit_id(start_point)
            if commit is None:
                raise NotFoundError(f"Start point {start_point} not found")
            args.append(commit)
        await git.run(*args)
        logger.info("Branch %s created", name)

    async def list_branches(self) -> list[str]:
        git = self._require_git()
        out = await git.output("branch", "--format=%(refname:short)")
        return [line.strip() for line in out.splitlines() if line.strip()]

    async def checkout_branch(self, name: str) -> None:
        git = self._require_git()
        if name not in await self.list_branches():
            raise NotFoundError(f"Branch {name} does not exist")
        await git.run("checkout", "-q", name)
        logger.info("Switched to branch %s", name)

    async def get_current_branch(self) -> str | None:
        git = self._require_git()
        rc, out, _ = await git.run("symbolic-ref", "--short", "-q", "HEAD", check=False)
        return out.strip() if rc == 0 and out.strip() else None

    # ==================== Bundle ====================

    async def export_bundle(self) -> GitBundle:
        git = self._require_git()
        settings = self._require_settings()
        files: list[BundleFile] = []
        for rel in (await git.output("ls-files", "-z")).split("\0"):
            if not rel:
                continue
            stored = await self.get_file(rel)
            if stored is not None:
                files.append(BundleFile(path=stored.path, content=stored.content, version_token=stored.version_token))
        history = await self.get_history(None, EXPORT_HISTORY_LIMIT)
        return GitBundle(
            files=files,
            history=[BundleHistoryEntry.from_entry(entry) for entry in history],
            branches=await self.list_branches(),
            author=BundleAuthor(name=settings.author_name, email=settings.author_email),
        )

    async def import_bundle(self, data: Any) -> int:
        bundle: GitBundle = parse_envelope(data, GitBundle)
        self._require_git()
        # Every path must land inside the working tree before the first commit.
        for item in bundle.files:
            rel, _ = self._resolve(item.path)
            if not rel:
                raise StorageError("Bundle entry has an empty path", path=item.path)
        logger.info("Importing %d files from bundle", len(bundle.files))
        for item in bundle.files:
            await self.put_file(item.path, item.content, f"Import: {item.path}")
        logger.info("Import complete")
        return len(bundle.files)

    # ==================== Remotes ====================

    async def add_remote(self, name: str, url: str, token: str | None = None) -> None:
        try:
            validate_remote_name(name)
        except ValueError as exc:
            raise StorageConfigError(str(exc)) from exc
        await self._set_remote(self._require_git(), name, url)
        if token:
            self._remote_tokens[name] = token
        logger.info("Remote %s added: %s", name, url)

    async def push(self, remote: str = "origin", branch: str | None = None) -> None:
        await self._network("push", remote, branch)

    async def pull(self, remote: str = "origin", branch: str | None = None) -> None:
        await self._network("pull", remote, branch)

    # ==================== Internals ====================

    async def _network(self, action: str, remote: str, branch: str | None) -> None:
        git = self._require_git()
        settings = self._require_settings()
        if remote not in await self._remotes():
            raise StorageConfigError(f"Remote {remote} not configured")
        target_branch = branch or await self.get_current_branch() or settings.default_branch
        args = [action, remote, target_branch]
        if action == "pull":
            args = [action, "--no-rebase", "--no-edit", remote, target_branch]
        logger.info("Running git %s %s %s", action, remote, target_branch)
        try:
            await git.run(
                *args,
                timeout=settings.network_timeout,
                extra_env=_basic_auth_env(self._remote_tokens.get(remote)),
            )
        except GitCommandError as exc:
            raise TransportFailureError(f"git {action} to {remote} failed: {exc.stderr.strip()}") from exc

    async def _auto_push(self) -> None:
        settings = self._require_settings()
        if not settings.auto_push:
            return
        try:
            await self.push("origin")
        except StorageError as exc:
            logger.warning("Auto-push failed, local commit kept: %s", exc)

    async def _remotes(self) -> list[str]:
        out = await self._require_git().output("remote")
        return [line.strip() for line in out.splitlines() if line.strip()]

    @staticmethod
    async def _set_remote(git: GitRunner, name: str, url: str) -> None:
        existing = (await git.output("remote")).split()
        if name in existing:
            await git.run("remote", "set-url", name, url)
        else:
            await git.run("remote", "add", name, url)

    async def _commit(self, message: str) -> str:
        git = self._require_git()
        # Identical content still yields a new commit, so every write gets a fresh token.
        await git.run("commit", "-q", "--allow-empty", "-m", message)
        return (await git.output("rev-parse", "HEAD")).strip()

    async def _path_token(self, rel: str) -> str:
        git = self._require_git()
        token = (await git.output("log", "-n", "1", "--format=%H", "--", rel)).strip()
        if token:
            return token
        return (await git.output("rev-parse", "HEAD")).strip()

    async def _commit_id(self, oid: str) -> str | None:
        # A leading dash would be parsed as an option.
        if not oid or oid.startswith("-"):
            return None
        rc, out, _ = await self._require_git().run("rev-parse", "--verify", "-q", f"{oid}^{{commit}}", check=False)
        return out.strip() if rc == 0 and out.strip() else None

    async def _read_commit(self, oid: str) -> HistoryEntry:
        git = self._require_git()
        commit = await self._commit_id(oid)
        if commit is None:
            raise NotFoundError(f"Commit {oid} not found")
        rc, out, _ = await git.run("show", "-s", f"--format={_LOG_FORMAT}", commit, check=False)
        entries = _parse_log(out) if rc == 0 else []
        if not entries:
            raise NotFoundError(f"Commit {oid} not found")
        return entries[0]

    def _resolve(self, path: str) -> tuple[str, Path]:
        return _resolve_in(self._require_settings().resolved_repo_dir(), path)

    def _require_settings(self) -> LocalGitSettings:
        if not self._configured or self._settings is None:
            raise NotConfiguredError("Local git adapter not configured")
        return self._settings

    def _require_git(self) -> GitRunner:
        if not self._configured or self._git is None:
            raise NotConfiguredError("Local git adapter not configured")
        return self._git


def _resolve_in(repo_dir: Path, path: str) -> tuple[str, Path]:
    """Map a storage path to (posix relative path, absolute target) inside the working tree."""
    repo_dir = repo_dir.resolve()
    cleaned = path.strip().strip("/")
    target = (repo_dir / cleaned).resolve() if cleaned else repo_dir
    if target == repo_dir:
        return "", target
    if repo_dir not in target.parents:
        raise StorageError(f"Path escapes the repository: {path}", path=path)
    parts = target.relative_to(repo_dir).parts
    if parts[0] == ".git":
        raise StorageError(f"Path points into repository metadata: {path}", path=path)
    return "/".join(parts), target


def _basic_auth_env(token: str | None) -> dict[str, str]:
    if not token:
        return {}
    # @@@token-via-env - pass the auth header through GIT_CONFIG_* so the token never shows up in argv.
    basic = encode_content(f"x-access-token:{token}")
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
    }


def _parse_log(output: str) -> list[HistoryEntry]:
    entries: list[HistoryEntry] = []
    for record in output.split(_RECORD_SEP):
        record = record.lstrip("\n")
        if not record.strip():
            continue
        fields = record.split(_FIELD_SEP, 5)
        if len(fields) < 6:
            continue
        sha, parents, name, email, date, message = fields
        parent_list = parents.split()
        entries.append(
            HistoryEntry(
                id=sha,
                message=message.strip(),
                author=name,
                email=email,
                timestamp=date,
                parent_id=parent_list[0] if parent_list else None,
            )
        )
    return entries
