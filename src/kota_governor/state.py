"""
The single mutable record shared by every component of a session.

One `SessionState` is created when the host session starts and passed
explicitly to the components that read or mutate it; nothing in the package
keeps session data in module globals.
"""
from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .indexing import IndexSlot
from .inflight import InFlightTracker

if TYPE_CHECKING:
    from .client.mcp_client import KotaMcpClient
    from .config.settings import ConfigSources, KotaConfig


class ConnectionStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


def normalize_repo_path(path: str, base_dir: str | None = None) -> str:
    """
    Produces a stable absolute form of ``path`` for equality checks.

    Relative paths are resolved against ``base_dir`` (the working directory by
    default); ``.``/``..`` segments and trailing separators are collapsed.
    Symlinks are not resolved.
    """
    base = base_dir if base_dir is not None else os.getcwd()
    joined = path if os.path.isabs(path) else os.path.join(base, path)
    return os.path.normpath(joined)


@dataclass
class SessionState:
    """
    Mutable per-session record.

    Invariants:
        ``indexed_repo_root`` is only set right after a successful index RPC
        for that exact normalized path. ``connection_status`` is RUNNING only
        while ``client`` is non-null and was connected when last observed.
    """

    connection_status: ConnectionStatus = ConnectionStatus.STOPPED
    last_error: Optional[str] = None

    repo_root: Optional[str] = None
    indexed_repo_root: Optional[str] = None
    indexed_at_commit: Optional[str] = None
    staleness_warned_for_head: Optional[str] = None

    index_in_flight: Optional["asyncio.Future[None]"] = None
    in_flight_calls: InFlightTracker = field(default_factory=InFlightTracker)

    config: Optional["KotaConfig"] = None
    config_sources: Optional["ConfigSources"] = None
    client: Optional["KotaMcpClient"] = None

    def is_indexed(self, target_path: str) -> bool:
        return self.indexed_repo_root == target_path

    def index_slot(self, target_path: str) -> IndexSlot:
        """Binds the coordinator's accessors to this state for ``target_path``."""

        def set_indexed(value: bool) -> None:
            self.indexed_repo_root = target_path if value else None

        def set_in_flight(future: Optional["asyncio.Future[None]"]) -> None:
            self.index_in_flight = future

        return IndexSlot(
            is_indexed=lambda: self.is_indexed(target_path),
            set_indexed=set_indexed,
            in_flight=lambda: self.index_in_flight,
            set_in_flight=set_in_flight,
        )

    def reset_connection(self) -> None:
        self.client = None
        self.connection_status = ConnectionStatus.STOPPED
        self.indexed_repo_root = None
        self.indexed_at_commit = None
        self.staleness_warned_for_head = None


def make_initial_session_state() -> SessionState:
    return SessionState()
