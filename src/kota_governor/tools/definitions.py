"""
Tool surface exposed to the model.

Each ``kota_*`` tool maps onto one short KotaDB tool name and carries a pydantic
request model describing its parameters. `build_kota_tools` turns the registry
into LangChain tools bound to a session executor so an agent graph can bind
them like any other tool.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

TOOL_OUTPUT_BUDGET_CHARS = 5000


class KotaIndexRequest(BaseModel):
    path: Optional[str] = Field(default=None, description="Repo root (defaults to detected repo root)")
    force: bool = Field(default=False, description="Re-index even if the repository is already indexed.")


class KotaSearchRequest(BaseModel):
    query: str = Field(..., description="Search query")
    limit: Optional[int] = Field(default=None, ge=1, le=50)
    output: Optional[Literal["paths", "compact", "snippet"]] = None


class KotaDepsRequest(BaseModel):
    file_path: str = Field(..., description="Repo-relative file path")
    direction: Optional[Literal["dependencies", "dependents", "both"]] = None
    depth: Optional[int] = Field(default=None, ge=1, le=3)
    include_tests: Optional[bool] = None


class KotaUsagesRequest(BaseModel):
    symbol: str
    file: Optional[str] = None
    include_tests: Optional[bool] = None


class KotaImpactRequest(BaseModel):
    change_type: Literal["feature", "refactor", "fix", "chore"]
    description: str
    files_to_modify: Optional[List[str]] = None
    files_to_create: Optional[List[str]] = None
    files_to_delete: Optional[List[str]] = None


class KotaTaskContextRequest(BaseModel):
    files: List[str]
    include_tests: Optional[bool] = None
    include_symbols: Optional[bool] = None
    max_impacted_files: Optional[int] = Field(default=None, ge=1, le=50)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    kota_tool: str
    label: str
    description: str
    args_schema: Type[BaseModel]
    pinned: bool = False


@dataclass(frozen=True, slots=True)
class ToolOutput:
    text: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> List[Dict[str, str]]:
        return [{"type": "text", "text": self.text}]


TOOL_SPECS: Dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            "kota_index",
            "index",
            "Kota: Index",
            "Ensure the current repository is indexed in KotaDB.",
            KotaIndexRequest,
        ),
        ToolSpec(
            "kota_search",
            "search",
            "Kota: Search",
            "Search code via KotaDB (bounded output).",
            KotaSearchRequest,
        ),
        ToolSpec(
            "kota_deps",
            "deps",
            "Kota: Dependencies",
            "Query file dependency graph via KotaDB (bounded output).",
            KotaDepsRequest,
        ),
        ToolSpec(
            "kota_usages",
            "usages",
            "Kota: Usages",
            "Find symbol usages via KotaDB (bounded output).",
            KotaUsagesRequest,
        ),
        ToolSpec(
            "kota_impact",
            "impact",
            "Kota: Impact",
            "Analyze change impact via KotaDB (bounded output).",
            KotaImpactRequest,
            pinned=True,
        ),
        ToolSpec(
            "kota_task_context",
            "task_context",
            "Kota: Task Context",
            "Summarize dependencies and impact for a set of files (bounded output).",
            KotaTaskContextRequest,
        ),
    )
}

ToolExecutor = Callable[[str, Dict[str, Any]], Awaitable[ToolOutput]]


def tool_params(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drops unset optional parameters so KotaDB applies its own defaults."""
    return {key: value for key, value in values.items() if value is not None}


def _make_tool(spec: ToolSpec, execute: ToolExecutor) -> BaseTool:
    async def _run(**kwargs: Any) -> str:
        output = await execute(spec.name, tool_params(kwargs))
        return output.text

    return StructuredTool.from_function(
        coroutine=_run,
        name=spec.name,
        description=spec.description,
        args_schema=spec.args_schema,
    )


def build_kota_tools(execute: ToolExecutor) -> List[BaseTool]:
    """LangChain tools for every registered ``kota_*`` tool, routed through ``execute``."""
    return [_make_tool(spec, execute) for spec in TOOL_SPECS.values()]
