"""
Session glue between a coding-assistant host and KotaDB.

`KotaSession` owns one `SessionState` and wires the components together:
configuration, the connection to the KotaDB subprocess, budgeted tool calls,
index coordination, staleness warnings, context pruning, blob spilling of large
tool outputs and the ``/kota`` command family. The host calls the ``on_*`` /
``before_*`` hooks at the corresponding points of its lifecycle and routes the
``kota_*`` tools through `execute_tool` (or binds `langchain_tools`).
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from langchain_core.tools import BaseTool

from .autocontext import extract_file_paths, should_auto_inject
from .blobs import aevict_blobs, awrite_blob
from .client.mcp_client import KotaMcpClient, StdioTarget
from .config.settings import KotaConfig, load_config
from .errors import KotaError, NotConnectedError, ToolCallError
from .event_log import EventLogger, SafeEventLogger, create_event_logger
from .indexing import ensure_indexed, owner_was_cancelled
from .pruning import compute_adaptive_settings, prune_messages
from .staleness import StalenessTracker
from .state import ConnectionStatus, SessionState, make_initial_session_state, normalize_repo_path
from .status import StatusInfo, format_status_line
from .text import preview, truncate_chars
from .tools.definitions import TOOL_OUTPUT_BUDGET_CHARS, TOOL_SPECS, ToolOutput, build_kota_tools
from .tools.invoker import ToolCallResult, call_budgeted
from .vcs import GitRepository, Repository

LOGGER = logging.getLogger(__name__)

STATUS_KEY = "pi-kota"
SHUTDOWN_DRAIN_MS = 3000
AUTO_CONTEXT_HEADER = "[pi-kota auto context]"
AUTO_CONTEXT_TYPE = "pi-kota:autoContext"
KOTA_TOOL_PREFIX = "kota_"
ERROR_PREVIEW_CHARS = 200


class HostUI(Protocol):
    async def confirm(self, title: str, message: str) -> bool:
        ...

    def notify(self, message: str, level: str) -> None:
        ...

    def set_status(self, key: str, text: str) -> None:
        ...


@dataclass(frozen=True, slots=True)
class CommandResult:
    message: str
    level: str = "info"


def should_spill_tool_result(tool_name: str) -> bool:
    """Only KotaDB tool outputs are spilled to the blob cache."""
    return tool_name.startswith(KOTA_TOOL_PREFIX)


def _first_text_block(content: Any) -> str:
    if not isinstance(content, Sequence) or isinstance(content, str):
        return ""
    for block in content:
        if isinstance(block, Mapping) and block.get("type") == "text" and isinstance(block.get("text"), str):
            return block["text"]
    return ""


class KotaSession:
    """
    One host session's view of KotaDB.

    Args:
        host: UI hooks of the host; ``None`` for headless use, in which case
            confirmations are granted and notifications only go to the log.
        vcs: Repository queries; defaults to `GitRepository`.
        event_logger: Debug event log; by default built from ``config.log`` on
            `start`.
        client_factory: Builds the RPC client for a `StdioTarget`.
        home_dir: Home directory for the global config file.
        environ: Environment used for config overrides.
    """

    def __init__(
        self,
        host: HostUI | None = None,
        vcs: Repository | None = None,
        event_logger: EventLogger | None = None,
        *,
        client_factory=KotaMcpClient,
        home_dir: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.host = host
        self.vcs: Repository = vcs or GitRepository()
        self.state: SessionState = make_initial_session_state()
        self._client_factory = client_factory
        self._home_dir = home_dir
        self._environ = environ
        self._owns_event_logger = event_logger is None
        self.events = SafeEventLogger(event_logger) if event_logger is not None else SafeEventLogger.noop()
        self.staleness = StalenessTracker(self.state, self.vcs, host, self.events)
        self._connecting: Optional[asyncio.Future[None]] = None

    # ------------------------------------------------------------------ host UI

    def _notify(self, message: str, level: str = "info") -> None:
        LOGGER.log(logging.WARNING if level in {"warning", "error"} else logging.INFO, message)
        if self.host is not None:
            self.host.notify(message, level)

    def _set_status(self, text: str) -> None:
        if self.host is not None:
            self.host.set_status(STATUS_KEY, text)

    async def _confirm(self, title: str, message: str) -> bool:
        if self.host is None:
            return True
        return await self.host.confirm(title, message)

    # ---------------------------------------------------------------- lifecycle

    async def start(self, cwd: str) -> None:
        self.state.repo_root = await self.vcs.detect_repo_root(cwd)
        await self.refresh_config(cwd)
        config = self._require_config()
        if self._owns_event_logger:
            self.events = create_event_logger(config.log.enabled, config.log.path)
            self.staleness.event_logger = self.events
        self._set_status(f"kota: stopped | repo: {self.state.repo_root}")

    async def refresh_config(self, cwd: str) -> KotaConfig:
        if not self.state.repo_root:
            self.state.repo_root = await self.vcs.detect_repo_root(cwd)
        loaded = load_config(
            cwd=cwd,
            project_root=self.state.repo_root,
            home_dir=self._home_dir,
            environ=self._environ,
        )
        self.state.config = loaded.config
        self.state.config_sources = loaded.sources
        return loaded.config

    def _require_config(self) -> KotaConfig:
        if self.state.config is None:
            raise KotaError("kota: config not loaded")
        return self.state.config

    async def _ensure_config(self, cwd: str) -> KotaConfig:
        if self.state.config is None:
            await self.refresh_config(cwd)
        return self._require_config()

    async def shutdown(self) -> None:
        await self.state.in_flight_calls.drain(SHUTDOWN_DRAIN_MS)
        await self.events.close()
        client, self.state.client = self.state.client, None
        if client is not None:
            try:
                await client.close()
            except Exception as exc:  # noqa: BLE001 - shutdown is best-effort
                LOGGER.warning("Closing KotaDB connection failed: %s", exc)
        self.state.connection_status = ConnectionStatus.STOPPED

    # --------------------------------------------------------------- connection

    async def ensure_connected(self, cwd: str) -> None:
        """
        Connects to KotaDB unless a live connection exists.

        Concurrent callers share a single connection attempt and its outcome.

        Raises:
            ConnectError: The subprocess could not be started.
        """
        config = self._require_config()
        if not self.state.repo_root:
            self.state.repo_root = await self.vcs.detect_repo_root(cwd)

        while True:
            client = self.state.client
            if client is not None and client.is_connected():
                self.state.connection_status = ConnectionStatus.RUNNING
                return

            pending = self._connecting
            if pending is None:
                break
            try:
                await asyncio.shield(pending)
            except asyncio.CancelledError:
                if owner_was_cancelled(pending):
                    continue
                raise
            return

        shared: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._connecting = shared
        try:
            await self._connect(config)
        except BaseException as exc:
            if isinstance(exc, asyncio.CancelledError):
                shared.cancel()
            else:
                shared.set_exception(exc)
                shared.exception()
            raise
        else:
            shared.set_result(None)
        finally:
            if self._connecting is shared:
                self._connecting = None

    async def _connect(self, config: KotaConfig) -> None:
        state = self.state
        state.connection_status = ConnectionStatus.STARTING
        stale = state.client
        if stale is not None:
            stale.disconnect()
            state.client = None

        client = self._client_factory(
            StdioTarget(
                command=config.kota.command,
                args=tuple(config.kota.args),
                cwd=state.repo_root,
                connect_timeout_ms=config.kota.connect_timeout_ms,
            )
        )
        try:
            await client.connect()
        except Exception as exc:
            state.connection_status = ConnectionStatus.ERROR
            state.last_error = str(exc)
            await self.events.log("mcp", "connect_error", {"error": state.last_error})
            self._set_status(f"kota: error ({state.last_error})")
            raise

        state.client = client
        state.connection_status = ConnectionStatus.RUNNING
        state.last_error = None
        await self.events.log("mcp", "connected", {"repo": state.repo_root or "(unknown)"})
        self._set_status(f"kota: running | repo: {state.repo_root}")

    def _on_transport_error(self, client: KotaMcpClient) -> None:
        client.disconnect()
        if self.state.client is client:
            self.state.client = None
            self.state.connection_status = ConnectionStatus.STOPPED

    async def list_tools_safe(self) -> List[str]:
        client = self.state.client
        if client is None:
            return []
        try:
            return await client.list_tools()
        except Exception as exc:  # noqa: BLE001 - status output only
            LOGGER.debug("list_tools failed: %s", exc)
            return []

    # -------------------------------------------------------------------- calls

    async def call_tool(self, cwd: str, tool_name: str, args: Any) -> ToolCallResult:
        """
        Performs one budgeted KotaDB call.

        Connection problems raise; tool failures come back as ``ok=False``
        results whose text is already formatted for the model.
        """
        await self.ensure_connected(cwd)
        client = self.state.client
        if client is None:
            raise NotConnectedError()

        started = time.monotonic()
        await self.events.log("tool", "call_start", {"toolName": tool_name})
        async with self.state.in_flight_calls.track():
            result = await call_budgeted(
                tool_name,
                args,
                TOOL_OUTPUT_BUDGET_CHARS,
                list_tools=client.list_tools,
                call_tool=client.call_tool,
                on_transport_error=lambda: self._on_transport_error(client),
            )
        data: Dict[str, Any] = {
            "toolName": tool_name,
            "ok": result.ok,
            "durationMs": int((time.monotonic() - started) * 1000),
        }
        if not result.ok:
            data["errorKind"] = result.error_kind.value if result.error_kind else None
            data["error"] = preview(result.text, ERROR_PREVIEW_CHARS)
        await self.events.log("tool", "call_end", data)
        return result

    async def call_tool_strict(self, cwd: str, tool_name: str, args: Any) -> ToolCallResult:
        result = await self.call_tool(cwd, tool_name, args)
        if not result.ok:
            raise ToolCallError(result.text)
        return result

    # ----------------------------------------------------------------- indexing

    async def _record_head(self, cwd: str) -> None:
        head = await self.vcs.get_head_commit(self.state.repo_root or cwd)
        self.staleness.record_indexed(head)

    async def ensure_repo_indexed(self, cwd: str) -> None:
        """Indexes the repository root once per session; warns when HEAD moved since."""
        config = self._require_config()
        target = normalize_repo_path(self.state.repo_root or cwd)
        was_indexed = self.state.is_indexed(target)

        async def index() -> None:
            await self.call_tool_strict(cwd, "index", {"path": target})
            await self._record_head(cwd)

        await ensure_indexed(
            self.state.index_slot(target),
            index,
            confirm_index=config.kota.confirm_index,
            confirm=self._confirm,
        )
        if was_indexed:
            await self.staleness.check()

    async def index_repository(
        self,
        cwd: str,
        path: str | None = None,
        *,
        force: bool = False,
        confirm: bool = False,
    ) -> str:
        """
        Indexes ``path`` (the repository root by default).

        Args:
            cwd: Working directory relative paths are resolved against.
            path: Directory to index.
            force: Re-index even if the target is already indexed.
            confirm: Ask the user first when ``kota.confirmIndex`` is set.

        Returns:
            KotaDB's output, or ``"Index complete."`` when there was none.
        """
        config = await self._ensure_config(cwd)
        await self.ensure_connected(cwd)
        target = normalize_repo_path(path or self.state.repo_root or cwd, cwd)
        output = ""

        async def index() -> None:
            nonlocal output
            result = await self.call_tool_strict(cwd, "index", {"path": target})
            output = result.text
            await self._record_head(cwd)
            self.state.staleness_warned_for_head = None

        await ensure_indexed(
            self.state.index_slot(target),
            index,
            confirm_index=confirm and config.kota.confirm_index,
            confirm=self._confirm,
            force=force,
        )
        return output or "Index complete."

    # -------------------------------------------------------------------- tools

    async def execute_tool(self, name: str, params: Mapping[str, Any], cwd: str) -> ToolOutput:
        """
        Runs one registered ``kota_*`` tool.

        Raises:
            KotaError: Unknown tool, connection failure, declined indexing or a
                failed KotaDB call (as `ToolCallError`).
        """
        spec = TOOL_SPECS.get(name)
        if spec is None:
            raise KotaError(f"Unknown kota tool: {name}")

        if spec.kota_tool == "index":
            text = await self.index_repository(
                cwd,
                params.get("path"),
                force=bool(params.get("force", False)),
            )
            return ToolOutput(text=text, details={"indexed": True})

        await self._ensure_config(cwd)
        await self.ensure_connected(cwd)
        await self.ensure_repo_indexed(cwd)
        result = await self.call_tool_strict(cwd, spec.kota_tool, dict(params))
        details: Dict[str, Any] = {"truncatedToChars": TOOL_OUTPUT_BUDGET_CHARS, "ok": True}
        if spec.pinned:
            details["pinned"] = True
        return ToolOutput(text=result.text, details=details)

    def langchain_tools(self, cwd: str) -> List[BaseTool]:
        """The ``kota_*`` tools as LangChain tools bound to ``cwd``."""

        async def execute(name: str, params: Dict[str, Any]) -> ToolOutput:
            return await self.execute_tool(name, params, cwd)

        return build_kota_tools(execute)

    # -------------------------------------------------------------------- hooks

    async def before_agent_start(self, prompt: str, cwd: str) -> Optional[Dict[str, Any]]:
        """
        Builds an auto-context message for prompts that mention a few files.

        Returns:
            A custom message for the host to inject, or ``None``. Failures of
            any kind only skip the injection.
        """
        config = await self._ensure_config(cwd)
        paths = extract_file_paths(prompt)
        if not should_auto_inject(paths, config.kota.auto_context):
            return None
        try:
            result = await self.call_tool(cwd, "task_context", {"files": paths})
        except Exception as exc:  # noqa: BLE001 - auto context is optional
            LOGGER.info("Auto context skipped: %s", exc)
            return None
        if not result.ok:
            return None
        return {
            "customType": AUTO_CONTEXT_TYPE,
            "content": f"{AUTO_CONTEXT_HEADER}\nFiles: {', '.join(paths)}\n\n{result.text}",
            "display": True,
        }

    def on_context(self, messages: Sequence[Any], token_usage: int | None = None) -> Optional[List[Any]]:
        """Returns the pruned history, or ``None`` when pruning is off."""
        config = self.state.config
        if config is None or not config.prune.enabled:
            return None
        base = config.prune_settings()
        effective = compute_adaptive_settings(base, token_usage) if config.prune.adaptive else base
        return prune_messages(messages, effective)

    async def on_tool_result(
        self,
        tool_name: str,
        content: Any,
        details: Mapping[str, Any] | None = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Spills an oversized KotaDB tool output to the blob cache.

        Returns:
            Replacement ``content`` and ``details`` for the tool result, or
            ``None`` to keep it unchanged.
        """
        config = self.state.config
        if config is None or not config.blobs.enabled:
            return None
        if not should_spill_tool_result(tool_name):
            return None

        text = _first_text_block(content)
        max_chars = config.prune.max_tool_chars
        if len(text) <= max_chars:
            return None

        try:
            blob = await awrite_blob(config.blobs.dir, text)
        except OSError as exc:
            LOGGER.warning("Could not write blob for %s output: %s", tool_name, exc)
            return None
        await self.events.log(
            "blobs",
            "written",
            {"toolName": tool_name, "blobId": blob.blob_id, "bytes": blob.byte_length},
        )

        excerpt = truncate_chars(text, max_chars)
        replacement = (
            f"{excerpt}\n\n"
            "[pi-kota] Output truncated. Full output saved to blob:\n"
            f"- blobId: {blob.blob_id}\n"
            f"- blobPath: {blob.path}"
        )
        return {
            "content": [{"type": "text", "text": replacement}],
            "details": {
                **(details or {}),
                "truncated": True,
                "blobId": blob.blob_id,
                "blobPath": str(blob.path),
                "originalChars": len(text),
            },
        }

    # ----------------------------------------------------------------- commands

    def status_line(self) -> str:
        state = self.state
        indexed = bool(state.repo_root) and state.is_indexed(normalize_repo_path(state.repo_root))
        return format_status_line(
            StatusInfo(
                status=state.connection_status,
                repo_root=state.repo_root,
                indexed=indexed,
                last_error=state.last_error,
            )
        )

    async def describe_status(self) -> str:
        state = self.state
        tools = await self.list_tools_safe()
        sources = state.config_sources
        indexed = bool(state.repo_root) and state.is_indexed(normalize_repo_path(state.repo_root))
        lines = [
            "pi-kota status",
            f"kota: {state.connection_status.value}",
            f"repo: {state.repo_root or '(unknown)'}",
            f"indexed: {'yes' if indexed else 'no'}",
            "config: global={}, project={}".format(
                (sources.global_path if sources else None) or "(none)",
                (sources.project_path if sources else None) or "(none)",
            ),
            f"mcp tools: {', '.join(tools)}" if tools else "mcp tools: (unknown/unavailable)",
        ]
        if state.last_error:
            lines.append(f"lastError: {state.last_error}")
        return "\n".join(lines)

    async def restart(self) -> None:
        client, self.state.client = self.state.client, None
        if client is not None:
            try:
                await client.close()
            except Exception as exc:  # noqa: BLE001 - the connection is discarded anyway
                LOGGER.warning("Closing KotaDB connection failed: %s", exc)
        self.state.reset_connection()
        self._set_status(f"kota: stopped | repo: {self.state.repo_root}")

    async def evict_blobs(self, cwd: str) -> CommandResult:
        config = await self._ensure_config(cwd)
        if not config.blobs.enabled:
            return CommandResult("Blob cache is disabled (config.blobs.enabled=false).")
        try:
            result = await aevict_blobs(config.blobs.dir, config.blobs.max_age_days, config.blobs.max_size_bytes)
        except Exception as exc:  # noqa: BLE001 - reported to the user
            return CommandResult(f"Blob eviction failed: {exc}", "warning")
        await self.events.log(
            "blobs",
            "evicted",
            {"removedCount": result.removed_count, "removedBytes": result.removed_bytes},
        )
        return CommandResult(f"Evicted {result.removed_count} blobs ({result.removed_bytes} bytes).")

    async def command(self, args: str, cwd: str) -> CommandResult:
        """
        Handles ``/kota <subcommand>`` and notifies the host with the outcome.

        Subcommands: ``status`` (default), ``reload-config``, ``restart``,
        ``index`` and ``evict-blobs``.
        """
        name = (args or "").strip()
        try:
            result = await self._dispatch(name, cwd)
        except KotaError as exc:
            result = CommandResult(str(exc), "error")
        self._notify(result.message, result.level)
        return result

    async def _dispatch(self, name: str, cwd: str) -> CommandResult:
        if not name or name == "status":
            return CommandResult(await self.describe_status())
        if name == "reload-config":
            await self.refresh_config(cwd)
            return CommandResult("Reloaded pi-kota config.")
        if name == "restart":
            await self.restart()
            return CommandResult("KotaDB connection reset. Next kota_* call will reconnect.")
        if name == "index":
            output = await self.index_repository(cwd, force=True, confirm=True)
            return CommandResult(output)
        if name == "evict-blobs":
            return await self.evict_blobs(cwd)
        return CommandResult(f"Unknown /kota subcommand: {name}", "warning")
