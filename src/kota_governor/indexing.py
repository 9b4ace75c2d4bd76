"""
Concurrency-safe "ensure indexed" coordination.

Several tools can ask for the repository to be indexed at the same moment (for
example a search and a dependency query issued in parallel by the model). Only
one indexing RPC may run at a time, and every caller that arrives while it runs
must observe the same outcome. Deduplication relies on a single-slot shared
future: the first caller installs it before its first suspension point, later
callers await it, and the slot is always cleared afterwards so a failed attempt
can be retried.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .errors import IndexCancelledError

LOGGER = logging.getLogger(__name__)

CONFIRM_TITLE = "Index repository?"
CONFIRM_MESSAGE = "KotaDB indexing can take a while. Index this repository now?"

ConfirmFn = Callable[[str, str], Awaitable[bool]]
IndexFn = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class IndexSlot:
    """
    Explicit accessors for the indexing state a coordinator operates on.

    Attributes:
        is_indexed: Reports whether the target is already indexed.
        set_indexed: Marks the target as indexed (or clears the mark).
        in_flight: Returns the shared future of a running index operation.
        set_in_flight: Installs or clears that shared future.
    """

    is_indexed: Callable[[], bool]
    set_indexed: Callable[[bool], None]
    in_flight: Callable[[], Optional["asyncio.Future[None]"]]
    set_in_flight: Callable[[Optional["asyncio.Future[None]"]], None]


async def _always_confirm(_title: str, _message: str) -> bool:
    return True


def owner_was_cancelled(pending: "asyncio.Future[None]") -> bool:
    """
    True when shared work ended because its owner was cancelled, not the waiter.

    Such a waiter should take over the work instead of propagating a
    cancellation it never received.
    """
    task = asyncio.current_task()
    return pending.cancelled() and (task is None or not task.cancelling())


async def ensure_indexed(
    slot: IndexSlot,
    index: IndexFn,
    *,
    confirm_index: bool = False,
    confirm: ConfirmFn = _always_confirm,
    force: bool = False,
) -> None:
    """
    Makes sure the slot's target is indexed, running ``index`` at most once.

    A waiter whose shared run was abandoned by a cancelled owner retries the
    coordination and may become the new owner.

    Args:
        slot: State accessors for the target repository.
        index: Performs the indexing RPC.
        confirm_index: Ask the user before indexing.
        confirm: Confirmation prompt used when ``confirm_index`` is set.
        force: Re-index even when the target is already marked indexed.

    Raises:
        IndexCancelledError: The user declined the confirmation prompt.
        Exception: Whatever ``index`` raised; shared by all concurrent callers.
    """
    while True:
        if slot.is_indexed() and not force:
            return

        pending = slot.in_flight()
        if pending is None:
            break
        LOGGER.debug("Index already in flight; awaiting shared outcome.")
        try:
            await asyncio.shield(pending)
        except asyncio.CancelledError:
            if owner_was_cancelled(pending):
                LOGGER.debug("Indexing owner was cancelled; retrying.")
                continue
            raise
        return

    shared: asyncio.Future[None] = asyncio.get_running_loop().create_future()
    slot.set_in_flight(shared)
    try:
        if confirm_index and not await confirm(CONFIRM_TITLE, CONFIRM_MESSAGE):
            raise IndexCancelledError()
        await index()
        slot.set_indexed(True)
    except BaseException as exc:
        if isinstance(exc, asyncio.CancelledError):
            shared.cancel()
        else:
            shared.set_exception(exc)
            shared.exception()  # there may be no other waiters
        raise
    else:
        shared.set_result(None)
    finally:
        if slot.in_flight() is shared:
            slot.set_in_flight(None)
