"""Git queries used for repository detection and index staleness."""
from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence

LOGGER = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 3.0


class HeadReader(Protocol):
    async def get_head_commit(self, repo_path: str) -> str | None:
        ...


class Repository(HeadReader, Protocol):
    async def detect_repo_root(self, cwd: str) -> str:
        ...


class GitRepository:
    """Runs ``git rev-parse`` in a subprocess; every failure reads as ``None``."""

    def __init__(self, git: str = "git", timeout: float = GIT_TIMEOUT_SECONDS) -> None:
        self.git = git
        self.timeout = timeout

    async def _rev_parse(self, cwd: str, args: Sequence[str]) -> str | None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.git,
                "rev-parse",
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            LOGGER.debug("git unavailable in %s: %s", cwd, exc)
            return None
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            LOGGER.debug("git rev-parse %s timed out in %s", " ".join(args), cwd)
            return None
        if process.returncode != 0:
            return None
        value = stdout.decode("utf-8", errors="replace").strip()
        return value or None

    async def get_head_commit(self, repo_path: str) -> str | None:
        return await self._rev_parse(repo_path, ["HEAD"])

    async def detect_repo_root(self, cwd: str) -> str:
        toplevel = await self._rev_parse(cwd, ["--show-toplevel"])
        return toplevel or cwd
