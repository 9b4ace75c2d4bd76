"""
Process-wide logging setup for kota-governor.

Hosts that embed the session usually own stdout (it carries their UI or their
own protocol), so records go to stderr unless a stream is supplied. Behavior
is tunable through environment variables:

- ``KOTA_LOG_LEVEL``: root level name (default ``INFO``).
- ``KOTA_LOG_FORMAT``: `logging.Formatter` format string.
- ``KOTA_LOG_FILE``: optional path that receives a copy of every record.
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Final, TextIO

DEFAULT_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"
_NOISY_LOGGERS: Final[tuple[str, ...]] = ("mcp", "httpx", "anyio")
_CONFIGURED: bool = False


def _resolve_level(name: str | None) -> int:
    if not name:
        return logging.INFO
    value = getattr(logging, name.strip().upper(), None)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    *,
    level: str | None = None,
    stream: TextIO | None = None,
    force: bool = False,
) -> int:
    """
    Attach kota-governor's handlers to the root logger.

    Args:
        level: Level name overriding ``KOTA_LOG_LEVEL``.
        stream: Destination stream; stderr by default.
        force: Remove existing root handlers and configure again.

    Returns:
        The effective root level.
    """
    global _CONFIGURED
    root = logging.getLogger()
    if _CONFIGURED and not force:
        return root.level

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)

    resolved = _resolve_level(level or os.environ.get("KOTA_LOG_LEVEL"))
    formatter = logging.Formatter(
        fmt=os.environ.get("KOTA_LOG_FORMAT", DEFAULT_FORMAT),
        datefmt=DEFAULT_DATEFMT,
    )
    root.setLevel(resolved)

    console = logging.StreamHandler(stream=stream or sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    log_file = os.environ.get("KOTA_LOG_FILE")
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # The MCP SDK logs every JSON-RPC frame.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, resolved))

    _CONFIGURED = True
    return resolved
