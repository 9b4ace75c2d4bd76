"""
Exception hierarchy shared by the kota-governor runtime.

Connection problems, declined confirmations, configuration mistakes and strict
tool failures each get their own type so that callers can branch on the class
instead of matching message strings.
"""
from __future__ import annotations


class KotaError(Exception):
    """Base class for all errors raised by kota-governor."""


class ConnectError(KotaError):
    """Raised when the KotaDB subprocess cannot be started or handshaken."""


class RuntimeNotFoundError(ConnectError):
    """The JavaScript runtime needed to launch KotaDB is not on PATH."""

    def __init__(self, runtime: str) -> None:
        super().__init__(
            f"{runtime} not found on PATH. Install {runtime} "
            f"(https://bun.sh) or point kota.command at an existing binary."
        )
        self.runtime = runtime


class ConnectTimeoutError(ConnectError):
    """The handshake did not complete within the configured timeout."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"KotaDB failed to start within {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class SubprocessFailedError(ConnectError):
    """The subprocess died during the handshake and left diagnostics on stderr."""

    def __init__(self, stderr: str) -> None:
        super().__init__(f"KotaDB subprocess failed — {stderr}")
        self.stderr = stderr


class NotConnectedError(KotaError):
    """An RPC was attempted without a live connection."""

    def __init__(self) -> None:
        super().__init__("MCP client not connected")


class IndexCancelledError(KotaError):
    """The user declined the indexing confirmation prompt."""

    def __init__(self) -> None:
        super().__init__("Indexing cancelled by user")


class ConfigError(KotaError):
    """A configuration file exists but could not be parsed."""


class ToolCallError(KotaError):
    """A strict tool call returned ``ok=False``; the message is the budgeted text."""

    def __init__(self, text: str) -> None:
        super().__init__(text)
        self.text = text


__all__ = [
    "ConfigError",
    "ConnectError",
    "ConnectTimeoutError",
    "IndexCancelledError",
    "KotaError",
    "NotConnectedError",
    "RuntimeNotFoundError",
    "SubprocessFailedError",
    "ToolCallError",
]
