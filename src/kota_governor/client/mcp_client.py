"""Provides the stdio MCP client that talks to a KotaDB subprocess.

`KotaMcpClient` owns at most one live `ConnectionHandle`. A handle spawns the
KotaDB process through the MCP SDK's stdio transport, performs the
``initialize`` handshake and then keeps the session open inside a dedicated
owner task until it is closed or aborted. The anyio cancel scopes used by the
SDK must be entered and exited by the same task, which is why the session never
lives in the caller's task.

Everything the subprocess writes to stderr is captured from the moment of spawn.
When the handshake fails, the most recent part of that output is used to tell
apart a missing JavaScript runtime, a crashing subprocess and a plain protocol
failure, so the user sees an actionable message instead of "connection closed".
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Protocol, Sequence

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from ..errors import (
    ConnectTimeoutError,
    NotConnectedError,
    RuntimeNotFoundError,
    SubprocessFailedError,
)
from ..text import ELLIPSIS

LOGGER = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="kota-governor", version="0.1.0")
DEFAULT_CONNECT_TIMEOUT_MS = 10_000
DEFAULT_STDERR_CAP_BYTES = 16_384
TERMINATE_GRACE_SECONDS = 0.05
CLOSE_TIMEOUT_SECONDS = 5.0
STDERR_SNIPPET_CHARS = 1_000
STDERR_COMPACT_INTERVAL_SECONDS = 1.0


def to_text_content(content: Any) -> str:
    """Joins the ``text`` blocks of an MCP content list with newlines."""
    if not isinstance(content, list):
        return ""
    texts = [
        block["text"]
        for block in content
        if isinstance(block, Mapping) and block.get("type") == "text" and isinstance(block.get("text"), str)
    ]
    return "\n".join(texts)


class StderrTail:
    """
    Spooled capture of a subprocess's stderr, read back as its most recent bytes.

    The subprocess writes into an append-only temporary file (so reads here never
    move its write position); `tail` returns at most ``cap_bytes`` of the newest
    output. `compact` rewrites the file down to that tail once it holds more
    than four times the cap; a live connection calls it every
    ``STDERR_COMPACT_INTERVAL_SECONDS``, so the file stays bounded during long
    calls and while idle. Bytes the child appends between the read and the
    truncate of a compaction are lost.
    """

    def __init__(self, cap_bytes: int = DEFAULT_STDERR_CAP_BYTES) -> None:
        self.cap_bytes = max(1, cap_bytes)
        self.stream = tempfile.TemporaryFile(mode="a+b")

    def _size(self) -> int:
        return os.fstat(self.stream.fileno()).st_size

    def tail(self) -> str:
        if self.stream.closed:
            return ""
        self.stream.flush()
        size = self._size()
        self.stream.seek(max(0, size - self.cap_bytes))
        data = self.stream.read(self.cap_bytes)
        return data.decode("utf-8", errors="replace")

    def compact(self) -> None:
        if self.stream.closed or self._size() <= self.cap_bytes * 4:
            return
        recent = self.tail().encode("utf-8")
        self.stream.truncate(0)
        self.stream.write(recent)
        self.stream.flush()

    def close(self) -> None:
        if not self.stream.closed:
            self.stream.close()


@dataclass(frozen=True, slots=True)
class StdioTarget:
    """
    Launch parameters for the KotaDB subprocess.

    Attributes:
        command: Executable to spawn (``bun`` by default configuration).
        args: Arguments passed to ``command``.
        cwd: Working directory of the subprocess, normally the repository root.
        connect_timeout_ms: Upper bound for spawn plus handshake.
        stderr_cap_bytes: How much recent stderr is kept for diagnostics.
        runtime: Runtime whose absence gets a dedicated error message.
        env: Explicit environment; the MCP SDK's safe default when ``None``.
    """

    command: str
    args: Sequence[str] = ()
    cwd: Optional[str] = None
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    stderr_cap_bytes: int = DEFAULT_STDERR_CAP_BYTES
    runtime: str = "bun"
    env: Optional[Mapping[str, str]] = None

    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=list(self.args),
            cwd=self.cwd,
            env=dict(self.env) if self.env is not None else None,
        )


@dataclass(frozen=True, slots=True)
class RpcResponse:
    content: List[Dict[str, Any]] = field(default_factory=list)
    raw: Any = None


class Handle(Protocol):
    @property
    def alive(self) -> bool:
        ...

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def terminate(self, grace_seconds: float) -> None:
        ...

    def abort(self) -> None:
        ...

    async def list_tools(self) -> List[str]:
        ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> RpcResponse:
        ...


HandleFactory = Callable[[StdioServerParameters, StderrTail], Handle]


class ConnectionHandle:
    """One spawned KotaDB process plus its initialized MCP session."""

    _background: ClassVar[set["asyncio.Task[None]"]] = set()

    def __init__(self, params: StdioServerParameters, stderr: StderrTail) -> None:
        self.params = params
        self.stderr = stderr
        self._session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._ready: Optional[asyncio.Future[ClientSession]] = None
        self._stop = asyncio.Event()

    @property
    def alive(self) -> bool:
        return self._session is not None and self._task is not None and not self._task.done()

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._task = loop.create_task(self._run(), name=f"kota-mcp:{self.params.command}")
        self._background.add(self._task)
        self._task.add_done_callback(self._background.discard)
        # Shielded: a timed-out caller must not cancel the owner task mid-handshake.
        self._session = await asyncio.shield(self._ready)
        self._task.add_done_callback(lambda _task: self.stderr.close())

    async def _run(self) -> None:
        ready = self._ready
        assert ready is not None
        try:
            async with stdio_client(self.params, errlog=self.stderr.stream) as (read, write):
                async with ClientSession(read, write, client_info=CLIENT_INFO) as session:
                    await session.initialize()
                    if not ready.done():
                        ready.set_result(session)
                    await self._hold_open()
        except asyncio.CancelledError:
            if not ready.done():
                ready.cancel()
            raise
        except Exception as exc:  # noqa: BLE001 - surfaced through the ready future
            if not ready.done():
                ready.set_exception(exc)
            else:
                LOGGER.warning("KotaDB session ended unexpectedly: %s", describe_exception(exc))
        finally:
            self._session = None

    async def _hold_open(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), STDERR_COMPACT_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                self.stderr.compact()

    async def close(self) -> None:
        task = self._task
        self._stop.set()
        if task is None or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=CLOSE_TIMEOUT_SECONDS)
        if not done:
            LOGGER.warning("KotaDB did not shut down within %.1fs; cancelling.", CLOSE_TIMEOUT_SECONDS)
            task.cancel()

    def abort(self) -> None:
        self._session = None
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def terminate(self, grace_seconds: float) -> None:
        task = self._task
        self.abort()
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=grace_seconds)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise NotConnectedError()
        return self._session

    async def list_tools(self) -> List[str]:
        result = await self._require_session().list_tools()
        return [str(tool.name) for tool in result.tools or []]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> RpcResponse:
        result = await self._require_session().call_tool(name, arguments)
        raw = result.model_dump(mode="json", by_alias=True, exclude_none=True)
        if result.isError:
            LOGGER.debug("KotaDB tool %s reported isError", name)
        content = raw.get("content") or []
        return RpcResponse(content=list(content), raw=raw)


def unwrap_exception(exc: BaseException) -> BaseException:
    """Returns the first meaningful leaf of an exception group."""
    current = exc
    while isinstance(current, BaseExceptionGroup) and current.exceptions:
        candidates = [inner for inner in current.exceptions if not isinstance(inner, asyncio.CancelledError)]
        current = (candidates or list(current.exceptions))[0]
    return current


def describe_exception(exc: BaseException) -> str:
    leaf = unwrap_exception(exc)
    return f"{leaf.__class__.__name__}: {leaf}"


def _runtime_missing_patterns(runtime: str) -> List[re.Pattern[str]]:
    name = re.escape(runtime)
    return [
        re.compile(rf"env:\s*['\"]?{name}['\"]?:\s*No such file or directory", re.IGNORECASE),
        re.compile(rf"(?:^|[\s/:]){name}:\s*(?:command\s+)?not found", re.IGNORECASE | re.MULTILINE),
    ]


def stderr_reports_missing_runtime(stderr: str, runtime: str) -> bool:
    return any(pattern.search(stderr) for pattern in _runtime_missing_patterns(runtime))


def _stderr_snippet(stderr: str) -> str:
    cleaned = stderr.strip()
    if len(cleaned) <= STDERR_SNIPPET_CHARS:
        return cleaned
    return f"{ELLIPSIS}{cleaned[-(STDERR_SNIPPET_CHARS - 1):]}"


def classify_connect_failure(exc: BaseException, stderr: str, target: StdioTarget) -> BaseException:
    """
    Maps a failed spawn/handshake to the most specific error available.

    Returns:
        `RuntimeNotFoundError` when the runtime is missing, `SubprocessFailedError`
        when stderr explains the failure, otherwise the unwrapped original error.
    """
    leaf = unwrap_exception(exc)
    command_name = os.path.splitext(os.path.basename(target.command))[0]
    if isinstance(leaf, FileNotFoundError) and command_name == target.runtime:
        return RuntimeNotFoundError(target.runtime)
    if stderr_reports_missing_runtime(stderr, target.runtime):
        return RuntimeNotFoundError(target.runtime)
    if stderr.strip():
        return SubprocessFailedError(_stderr_snippet(stderr))
    return leaf


class KotaMcpClient:
    """
    Connection state machine for the KotaDB subprocess.

    ``connect`` moves Disconnected → Connected (or raises a classified
    `ConnectError`); ``close`` shuts down cleanly; ``disconnect`` drops the
    connection without a shutdown handshake so that the next ``connect`` spawns
    a fresh process.
    """

    def __init__(self, target: StdioTarget, *, handle_factory: HandleFactory = ConnectionHandle) -> None:
        self.target = target
        self._handle_factory = handle_factory
        self._handle: Optional[Handle] = None
        self.last_stderr: str = ""

    def is_connected(self) -> bool:
        return self._handle is not None and self._handle.alive

    async def connect(self) -> None:
        if self._handle is not None:
            if self._handle.alive:
                return
            LOGGER.info("Previous KotaDB connection is gone; reconnecting.")
            self.disconnect()

        stderr = StderrTail(self.target.stderr_cap_bytes)
        handle = self._handle_factory(self.target.server_parameters(), stderr)
        timeout_ms = self.target.connect_timeout_ms
        LOGGER.info("Starting KotaDB: %s %s", self.target.command, " ".join(self.target.args))
        try:
            await asyncio.wait_for(handle.open(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            self.last_stderr = stderr.tail()
            await handle.terminate(TERMINATE_GRACE_SECONDS)
            stderr.close()
            raise ConnectTimeoutError(timeout_ms) from None
        except asyncio.CancelledError:
            # The owner task outlives a cancelled caller; stop it and its process.
            LOGGER.info("KotaDB start cancelled; stopping the subprocess.")
            handle.abort()
            stderr.close()
            raise
        except Exception as exc:
            self.last_stderr = stderr.tail()
            stderr.close()
            error = classify_connect_failure(exc, self.last_stderr, self.target)
            LOGGER.warning("KotaDB failed to start: %s", describe_exception(error))
            if error is exc:
                raise
            raise error from exc
        self._handle = handle
        LOGGER.info("KotaDB connected (cwd=%s)", self.target.cwd)

    async def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        await handle.close()

    def disconnect(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            LOGGER.info("Dropping KotaDB connection; next call reconnects.")
            handle.abort()

    def _require_handle(self) -> Handle:
        if self._handle is None:
            raise NotConnectedError()
        return self._handle

    async def list_tools(self) -> List[str]:
        return await self._require_handle().list_tools()

    async def call_tool(self, name: str, args: Any) -> RpcResponse:
        arguments = dict(args) if isinstance(args, Mapping) else {}
        return await self._require_handle().call_tool(name, arguments)
