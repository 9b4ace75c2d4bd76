"""Budgeted access to KotaDB tools and the ``kota_*`` tool surface."""
from .definitions import TOOL_SPECS, ToolOutput, ToolSpec, build_kota_tools
from .invoker import ErrorKind, ToolCallResult, call_budgeted, classify_error

__all__ = [
    "TOOL_SPECS",
    "ErrorKind",
    "ToolCallResult",
    "ToolOutput",
    "ToolSpec",
    "build_kota_tools",
    "call_budgeted",
    "classify_error",
]
