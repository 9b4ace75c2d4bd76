"""
Budgeted invocation of KotaDB tools.

`call_budgeted` wraps a single RPC so that its outcome always fits the
conversation budget: output is truncated to ``max_chars`` and failures become a
short, actionable text instead of an exception. Failures are classified once,
here, into transport errors (the pipe to the subprocess is broken, so the
connection is invalidated and the next call reconnects) and logical errors (the
peer answered with an error, so the caller gets the list of tools it does
offer).
"""
from __future__ import annotations

import errno
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional

import anyio
from mcp.shared.exceptions import McpError

from ..client.mcp_client import RpcResponse, to_text_content
from ..text import truncate_chars

LOGGER = logging.getLogger(__name__)

TOOL_NAME_MAP: Dict[str, str] = {
    "index": "index_repository",
    "deps": "search_dependencies",
    "usages": "find_usages",
    "impact": "analyze_change_impact",
    "task_context": "generate_task_context",
}

TRANSPORT_ERROR_CODES = frozenset({"EPIPE", "ECONNRESET", "ERR_STREAM_DESTROYED"})
_TRANSPORT_ERRNOS = frozenset({errno.EPIPE, errno.ECONNRESET})
_TRANSPORT_TYPES = (
    BrokenPipeError,
    ConnectionResetError,
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
)
_BROKEN_PIPE_RE = re.compile(r"broken pipe|\bEPIPE\b", re.IGNORECASE)
# JSON-RPC code the MCP SDK reports for requests pending when the stream closed.
MCP_CONNECTION_CLOSED = -32000

REMEDIATION_HINT = "Hint: ensure bun is installed and KotaDB starts with --toolset core."

ListTools = Callable[[], Awaitable[List[str]]]
CallTool = Callable[[str, Any], Awaitable[RpcResponse]]


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    LOGICAL = "logical"


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    """
    Outcome of one budgeted tool call.

    ``ok`` results carry the (truncated) tool output and the raw response;
    failures carry a formatted error text, ``raw=None`` and the error kind.
    """

    text: str
    raw: Any = None
    ok: bool = True
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def success(cls, text: str, raw: Any) -> "ToolCallResult":
        return cls(text=text, raw=raw, ok=True)

    @classmethod
    def failure(cls, kind: ErrorKind, text: str) -> "ToolCallResult":
        return cls(text=text, raw=None, ok=False, error_kind=kind)


def resolve_mcp_tool_name(tool_name: str) -> str:
    return TOOL_NAME_MAP.get(tool_name, tool_name)


def prepare_mcp_args(tool_name: str, args: Any) -> Any:
    """Rewrites ``index`` arguments into the ``{repository, localPath}`` shape KotaDB expects."""
    if tool_name == "index" and isinstance(args, Mapping):
        path = args.get("path")
        if isinstance(path, str) and path:
            return {"repository": path, "localPath": path}
    return args


def _error_message(err: BaseException) -> str:
    message = str(err)
    return message if message else err.__class__.__name__


def format_tool_error(tool_name: str, available_tools: List[str], err: BaseException) -> str:
    listing = ", ".join(available_tools) if available_tools else "(none)"
    return "\n".join(
        [
            f'kota: failed to call MCP tool "{tool_name}"',
            f"error: {_error_message(err)}",
            f"Available MCP tools: {listing}",
            REMEDIATION_HINT,
        ]
    )


def _walk(exc: BaseException) -> Iterator[BaseException]:
    stack: List[BaseException] = [exc]
    seen: set[int] = set()
    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            stack.extend(current.exceptions)
        if current.__cause__ is not None:
            stack.append(current.__cause__)


def _is_transport(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSPORT_TYPES):
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in TRANSPORT_ERROR_CODES:
        return True
    if isinstance(exc, OSError) and exc.errno in _TRANSPORT_ERRNOS:
        return True
    if isinstance(exc, McpError) and exc.error.code == MCP_CONNECTION_CLOSED:
        return True
    return bool(_BROKEN_PIPE_RE.search(str(exc)))


def classify_error(exc: BaseException) -> ErrorKind:
    """Transport if any exception in the group/cause chain indicates a broken connection."""
    if any(_is_transport(candidate) for candidate in _walk(exc)):
        return ErrorKind.TRANSPORT
    return ErrorKind.LOGICAL


async def _safe_list_tools(list_tools: ListTools) -> List[str]:
    try:
        return list(await list_tools())
    except Exception as exc:  # noqa: BLE001 - only used to enrich an error message
        LOGGER.debug("list_tools failed while formatting an error: %s", exc)
        return []


async def call_budgeted(
    tool_name: str,
    args: Any,
    max_chars: int,
    *,
    list_tools: ListTools,
    call_tool: CallTool,
    on_transport_error: Callable[[], None] | None = None,
) -> ToolCallResult:
    """
    Calls one KotaDB tool and fits the outcome into ``max_chars``.

    Args:
        tool_name: Short tool name (``search``, ``deps``, ``index``...).
        args: Tool arguments as received from the model.
        max_chars: Character budget for the returned text.
        list_tools: Lists the peer's tools; only used for logical failures.
        call_tool: Performs the RPC with the peer's method name.
        on_transport_error: Invoked when the connection itself is broken.

    Returns:
        A `ToolCallResult`; this function does not raise for tool failures.
    """
    mcp_name = resolve_mcp_tool_name(tool_name)
    mcp_args = prepare_mcp_args(tool_name, args)

    try:
        response = await call_tool(mcp_name, mcp_args)
    except Exception as exc:  # noqa: BLE001 - every failure becomes a budgeted message
        kind = classify_error(exc)
        if kind is ErrorKind.TRANSPORT:
            LOGGER.warning("Transport failure calling %s: %s", mcp_name, exc)
            available: List[str] = []
            if on_transport_error is not None:
                try:
                    on_transport_error()
                except Exception as callback_exc:  # noqa: BLE001
                    LOGGER.warning("Transport error callback failed: %s", callback_exc)
        else:
            LOGGER.info("Tool %s failed: %s", mcp_name, exc)
            available = await _safe_list_tools(list_tools)
        text = truncate_chars(format_tool_error(tool_name, available, exc), max_chars)
        return ToolCallResult.failure(kind, text)

    text = to_text_content(response.content)
    if not text:
        text = json.dumps(response.raw, indent=2, default=str)
    return ToolCallResult.success(truncate_chars(text, max_chars), response.raw)
