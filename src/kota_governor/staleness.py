"""
Index staleness detection based on the repository's HEAD commit.

The commit that was checked out when the repository was last indexed is kept in
session state. Whenever a tool call finds the repository already indexed, the
current HEAD is compared against it and the user is told once per distinct HEAD
that a re-index is recommended.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from .event_log import EventLogger, SafeEventLogger
from .state import SessionState
from .vcs import HeadReader

LOGGER = logging.getLogger(__name__)

STALE_INDEX_MESSAGE = "kota: repo HEAD has changed since last index. Run /kota index to update."


class Notifier(Protocol):
    def notify(self, message: str, level: str) -> None:
        ...


def is_index_stale(indexed_at_commit: Optional[str], current_head: Optional[str]) -> bool:
    if not indexed_at_commit or not current_head:
        return False
    return indexed_at_commit != current_head


class StalenessTracker:
    def __init__(
        self,
        state: SessionState,
        head_reader: HeadReader,
        notifier: Notifier | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.state = state
        self.head_reader = head_reader
        self.notifier = notifier
        self.event_logger = event_logger or SafeEventLogger.noop()

    def record_indexed(self, commit: Optional[str]) -> None:
        self.state.indexed_at_commit = commit

    def reset(self) -> None:
        self.state.indexed_at_commit = None
        self.state.staleness_warned_for_head = None

    async def check(self) -> bool:
        """
        Warns when HEAD moved past the indexed commit.

        Returns:
            True if a warning was issued by this call.
        """
        state = self.state
        if not state.indexed_at_commit or not state.repo_root:
            return False

        head = await self.head_reader.get_head_commit(state.repo_root)
        if not head:
            return False
        if state.staleness_warned_for_head == head:
            return False
        if not is_index_stale(state.indexed_at_commit, head):
            return False

        LOGGER.info("Index stale: indexed at %s, HEAD is %s", state.indexed_at_commit, head)
        await self.event_logger.log(
            "index",
            "stale_detected",
            {"indexedAtCommit": state.indexed_at_commit, "head": head},
        )
        if self.notifier is not None:
            self.notifier.notify(STALE_INDEX_MESSAGE, "warning")
        state.staleness_warned_for_head = head
        return True
