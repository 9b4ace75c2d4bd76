"""
Automatic task context for prompts that mention a few repository files.

When the user's prompt names one to three repository-relative files, KotaDB's
task-context tool can summarize their dependencies and impact up front, saving
the model a round of exploratory tool calls.
"""
from __future__ import annotations

import re
from typing import List, Literal

AutoContextMode = Literal["off", "onPaths", "always"]

MAX_AUTO_CONTEXT_PATHS = 3

_PATH_TOKEN_RE = re.compile(r"\b([A-Za-z0-9_\-]+(?:/[A-Za-z0-9_\-\.]+)+)\b")
_WINDOWS_DRIVE_RE = re.compile(r"^[A-Za-z]:/$")


def _is_repo_relative(token: str) -> bool:
    if token.startswith("/") or token.startswith(("http://", "https://")):
        return False
    if ":\\" in token or ".." in token:
        return False
    last = token.rsplit("/", 1)[-1]
    return "." in last


def _is_windows_drive_prefixed(text: str, start: int) -> bool:
    if start < 3:
        return False
    return bool(_WINDOWS_DRIVE_RE.match(text[start - 3 : start]))


def extract_file_paths(text: str) -> List[str]:
    """Returns repository-relative file paths mentioned in ``text``, first occurrence order."""
    seen: set[str] = set()
    paths: List[str] = []
    for match in _PATH_TOKEN_RE.finditer(text):
        token = match.group(1)
        if _is_windows_drive_prefixed(text, match.start(1)):
            continue
        if not _is_repo_relative(token) or token in seen:
            continue
        seen.add(token)
        paths.append(token)
    return paths


def should_auto_inject(paths: List[str], mode: AutoContextMode) -> bool:
    if mode == "off":
        return False
    if mode == "always":
        return True
    return 1 <= len(paths) <= MAX_AUTO_CONTEXT_PATHS
