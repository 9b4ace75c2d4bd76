from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .state import ConnectionStatus
from .text import truncate_chars

Styler = Callable[[str, str], str]

_ICONS: Dict[ConnectionStatus, str] = {
    ConnectionStatus.STOPPED: "○",
    ConnectionStatus.STARTING: "◌",
    ConnectionStatus.RUNNING: "●",
    ConnectionStatus.ERROR: "✖",
}
_STYLES: Dict[ConnectionStatus, str] = {
    ConnectionStatus.STOPPED: "dim",
    ConnectionStatus.STARTING: "dim",
    ConnectionStatus.RUNNING: "success",
    ConnectionStatus.ERROR: "error",
}
ERROR_PREVIEW_CHARS = 41


@dataclass(frozen=True, slots=True)
class StatusInfo:
    status: ConnectionStatus
    repo_root: Optional[str]
    indexed: bool
    last_error: Optional[str] = None


def _plain(_style: str, text: str) -> str:
    return text


def format_status_line(info: StatusInfo, style: Styler = _plain) -> str:
    """One-line status for the host's footer, e.g. ``● running | repo | indexed``."""
    repo = os.path.basename(info.repo_root.rstrip(os.sep)) if info.repo_root else "(no repo)"
    color = _STYLES[info.status]
    parts = [
        style(color, _ICONS[info.status]),
        style(color, info.status.value),
        style("dim", "|"),
        style("dim", repo),
    ]
    if info.status is ConnectionStatus.RUNNING:
        indexed = style("success", "indexed") if info.indexed else style("warning", "not indexed")
        parts.extend([style("dim", "|"), indexed])
    if info.status is ConnectionStatus.ERROR and info.last_error:
        parts.extend([style("dim", "|"), style("error", truncate_chars(info.last_error, ERROR_PREVIEW_CHARS))])
    return " ".join(parts)
