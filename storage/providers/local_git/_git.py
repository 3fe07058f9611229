"""Async runner for the git executable."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from asyncio.subprocess import PIPE
from pathlib import Path

from storage.errors import GitCommandError, StorageConfigError, TransportFailureError

logger = logging.getLogger(__name__)

# Overrides user settings that would make unattended commits prompt or rewrite content.
_BASE_ARGS = ("-c", "commit.gpgsign=false", "-c", "core.quotepath=off", "-c", "core.autocrlf=false")


def git_executable() -> str:
    exe = shutil.which("git")
    if exe is None:
        raise StorageConfigError("git executable not found on PATH; local-git mode is unavailable")
    return exe


class GitRunner:
    """Runs git commands inside one working tree with a fixed author identity."""

    def __init__(self, repo_dir: Path, author_name: str, author_email: str) -> None:
        self.repo_dir = Path(repo_dir)
        self.author_name = author_name
        self.author_email = author_email
        self._exe = git_executable()

    def _env(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        env.update(
            {
                "GIT_AUTHOR_NAME": self.author_name,
                "GIT_AUTHOR_EMAIL": self.author_email,
                "GIT_COMMITTER_NAME": self.author_name,
                "GIT_COMMITTER_EMAIL": self.author_email,
                "GIT_TERMINAL_PROMPT": "0",
                "GIT_CONFIG_NOSYSTEM": "1",
                "LC_ALL": "C",
            }
        )
        if extra:
            env.update(extra)
        return env

    async def run(
        self,
        *args: str,
        check: bool = True,
        timeout: float | None = None,
        cwd: Path | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> tuple[int, str, str]:
        """Run ``git <args>`` and return (returncode, stdout, stderr)."""
        argv = [self._exe, *_BASE_ARGS, *args]
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd or self.repo_dir),
            stdout=PIPE,
            stderr=PIPE,
            env=self._env(extra_env),
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.communicate()
            raise TransportFailureError(f"git {args[0]} timed out after {timeout}s") from exc
        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if check and proc.returncode != 0:
            raise GitCommandError(list(args), proc.returncode or 1, err)
        logger.debug("git %s -> %s", " ".join(args[:2]), proc.returncode)
        return proc.returncode or 0, out, err

    async def output(self, *args: str) -> str:
        _, out, _ = await self.run(*args)
        return out
