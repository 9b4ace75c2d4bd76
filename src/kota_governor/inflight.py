"""
Reference-counted tracking of outstanding tool calls.

The session acquires a token around every RPC so that shutdown can wait for
calls that are still running before tearing down the subprocess. Draining is
always bounded: a stuck call must never keep the host from exiting.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

LOGGER = logging.getLogger(__name__)


class InFlightTracker:
    def __init__(self) -> None:
        self._count = 0
        self._waiters: list[asyncio.Future[None]] = []

    @property
    def count(self) -> int:
        return self._count

    def acquire(self) -> Callable[[], None]:
        """
        Registers one outstanding call.

        Returns:
            A release callable. Only its first invocation has an effect.
        """
        self._count += 1
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            self._count -= 1
            if self._count == 0:
                self._wake_waiters()

        return release

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        release = self.acquire()
        try:
            yield
        finally:
            release()

    async def drain(self, timeout_ms: int) -> bool:
        """
        Waits until no calls are outstanding or ``timeout_ms`` elapses.

        Returns:
            True when the tracker reached zero, False when the timeout won.
        """
        if self._count == 0:
            return True
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=max(timeout_ms, 0) / 1000)
            return True
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Drain timed out after %sms with %s call(s) still in flight.",
                timeout_ms,
                self._count,
            )
            return False
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def _wake_waiters(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
