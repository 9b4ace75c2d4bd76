"""
Optional JSONL debug log of connection, tool and index events.

Each line is ``{"ts", "category", "event", "data"}``. The log is disabled by
default; when enabled it is append-only and written from a worker thread so
that disk latency never stalls the event loop. Callers always go through
`SafeEventLogger`, which guarantees that a broken log file can never fail a
tool call or a shutdown.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol

LOGGER = logging.getLogger(__name__)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class EventLogger(Protocol):
    async def log(self, category: str, event: str, data: Mapping[str, Any] | None = None) -> None:
        ...

    async def close(self) -> None:
        ...


class NoopEventLogger:
    async def log(self, category: str, event: str, data: Mapping[str, Any] | None = None) -> None:
        return None

    async def close(self) -> None:
        return None


class JsonlEventLogger:
    """Appends one JSON object per event to ``path``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    async def log(self, category: str, event: str, data: Mapping[str, Any] | None = None) -> None:
        entry = {"ts": _utc_iso(), "category": category, "event": event, "data": dict(data or {})}
        await asyncio.to_thread(self._write_entry, entry)

    def _write_entry(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.write("\n")

    async def close(self) -> None:
        return None


class SafeEventLogger:
    """No-throw adapter around any `EventLogger`."""

    def __init__(self, inner: EventLogger) -> None:
        self.inner = inner

    @classmethod
    def noop(cls) -> "SafeEventLogger":
        return cls(NoopEventLogger())

    async def log(self, category: str, event: str, data: Mapping[str, Any] | None = None) -> None:
        try:
            await self.inner.log(category, event, data)
        except Exception as exc:  # noqa: BLE001 - debug logging is best-effort
            LOGGER.debug("Dropped %s/%s event: %s", category, event, exc)

    async def close(self) -> None:
        try:
            await self.inner.close()
        except Exception as exc:  # noqa: BLE001 - debug logging is best-effort
            LOGGER.debug("Event log close failed: %s", exc)


def create_event_logger(enabled: bool, path: str | Path | None = None) -> SafeEventLogger:
    """
    Builds the session's event logger.

    Returns a no-op logger when logging is disabled or no path is configured.
    When the log directory cannot be created, the failure is logged and a no-op
    logger is returned instead.
    """
    if not enabled or not path:
        return SafeEventLogger.noop()
    target = Path(path).expanduser()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Event log disabled; cannot create %s: %s", target.parent, exc)
        return SafeEventLogger.noop()
    return SafeEventLogger(JsonlEventLogger(target))
