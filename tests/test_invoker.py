from __future__ import annotations

import asyncio
import errno
from typing import Any, List

import pytest
from mcp.shared.exceptions import McpError
from mcp.types import ErrorData

from kota_governor.client.mcp_client import RpcResponse
from kota_governor.tools.invoker import (
    REMEDIATION_HINT,
    ErrorKind,
    call_budgeted,
    classify_error,
    format_tool_error,
    prepare_mcp_args,
    resolve_mcp_tool_name,
)


class _CodedError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class _Peer:
    def __init__(self, response: Any = None, error: BaseException | None = None, tools=None) -> None:
        self.response = response
        self.error = error
        self.tools = tools if tools is not None else ["search", "find_usages"]
        self.calls: List[tuple] = []
        self.list_calls = 0

    async def list_tools(self) -> List[str]:
        self.list_calls += 1
        return self.tools

    async def call_tool(self, name: str, args: Any) -> RpcResponse:
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error
        return self.response


def _call(peer: _Peer, tool: str = "search", args: Any = None, max_chars: int = 5000, callback=None):
    return asyncio.run(
        call_budgeted(
            tool,
            args if args is not None else {"query": "x"},
            max_chars,
            list_tools=peer.list_tools,
            call_tool=peer.call_tool,
            on_transport_error=callback,
        )
    )


def test_tool_name_mapping() -> None:
    assert resolve_mcp_tool_name("index") == "index_repository"
    assert resolve_mcp_tool_name("deps") == "search_dependencies"
    assert resolve_mcp_tool_name("usages") == "find_usages"
    assert resolve_mcp_tool_name("impact") == "analyze_change_impact"
    assert resolve_mcp_tool_name("task_context") == "generate_task_context"
    assert resolve_mcp_tool_name("search") == "search"


def test_index_arguments_are_rewritten() -> None:
    assert prepare_mcp_args("index", {"path": "/repo"}) == {"repository": "/repo", "localPath": "/repo"}
    assert prepare_mcp_args("index", {}) == {}
    assert prepare_mcp_args("search", {"path": "/repo"}) == {"path": "/repo"}


def test_success_truncates_text() -> None:
    peer = _Peer(RpcResponse(content=[{"type": "text", "text": "abcdefgh"}], raw={"content": []}))
    result = _call(peer, max_chars=5)

    assert result.ok is True
    assert result.text == "abcd…"
    assert result.raw == {"content": []}
    assert peer.calls == [("search", {"query": "x"})]


def test_success_without_text_falls_back_to_json() -> None:
    raw = {"content": [], "structuredContent": {"hits": 2}}
    result = _call(_Peer(RpcResponse(content=[], raw=raw)))
    assert result.ok is True
    assert '"hits": 2' in result.text


def test_logical_error_lists_available_tools() -> None:
    peer = _Peer(error=ValueError("unknown tool"))
    callback_calls = []
    result = _call(peer, tool="deps", callback=lambda: callback_calls.append(1))

    assert result.ok is False
    assert result.error_kind is ErrorKind.LOGICAL
    assert result.raw is None
    assert result.text.splitlines() == [
        'kota: failed to call MCP tool "deps"',
        "error: unknown tool",
        "Available MCP tools: search, find_usages",
        REMEDIATION_HINT,
    ]
    assert peer.list_calls == 1
    assert callback_calls == []


@pytest.mark.parametrize("code", ["EPIPE", "ECONNRESET", "ERR_STREAM_DESTROYED"])
def test_transport_error_codes_invalidate_connection(code: str) -> None:
    peer = _Peer(error=_CodedError("write failed", code))
    callback_calls = []
    result = _call(peer, callback=lambda: callback_calls.append(1))

    assert result.ok is False
    assert result.error_kind is ErrorKind.TRANSPORT
    assert callback_calls == [1]
    assert peer.list_calls == 0
    assert "Available MCP tools: (none)" in result.text


def test_transport_errors_by_type_and_message() -> None:
    assert classify_error(BrokenPipeError()) is ErrorKind.TRANSPORT
    assert classify_error(OSError(errno.ECONNRESET, "reset")) is ErrorKind.TRANSPORT
    assert classify_error(RuntimeError("write EPIPE")) is ErrorKind.TRANSPORT
    assert classify_error(RuntimeError("Broken pipe while writing")) is ErrorKind.TRANSPORT
    assert classify_error(McpError(ErrorData(code=-32000, message="Connection closed"))) is ErrorKind.TRANSPORT
    assert classify_error(McpError(ErrorData(code=-32601, message="Method not found"))) is ErrorKind.LOGICAL
    assert classify_error(ValueError("bad args")) is ErrorKind.LOGICAL


def test_transport_errors_found_in_causes_and_groups() -> None:
    wrapped = RuntimeError("send failed")
    wrapped.__cause__ = BrokenPipeError()
    assert classify_error(wrapped) is ErrorKind.TRANSPORT
    assert classify_error(ExceptionGroup("g", [ValueError("x"), ConnectionResetError()])) is ErrorKind.TRANSPORT


def test_failing_callback_does_not_escape() -> None:
    def _explode() -> None:
        raise RuntimeError("callback failed")

    result = _call(_Peer(error=BrokenPipeError()), callback=_explode)
    assert result.error_kind is ErrorKind.TRANSPORT


def test_list_tools_failure_is_tolerated() -> None:
    peer = _Peer(error=ValueError("nope"))

    async def _broken_list() -> List[str]:
        raise RuntimeError("also broken")

    peer.list_tools = _broken_list  # type: ignore[method-assign]
    result = _call(peer)
    assert "Available MCP tools: (none)" in result.text


def test_error_text_respects_budget() -> None:
    result = _call(_Peer(error=ValueError("x" * 500)), max_chars=50)
    assert len(result.text) == 50
    assert result.text.endswith("…")


def test_format_tool_error_uses_class_name_for_empty_message() -> None:
    text = format_tool_error("search", [], KeyError())
    assert "error: KeyError" in text
