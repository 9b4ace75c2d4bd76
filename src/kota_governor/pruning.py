"""
Conversation pruning for long-running coding sessions.

Before every model turn the host hands over the full message history. Tool
outputs from older turns (file reads, shell output, KotaDB search hits) are the
dominant source of context growth, yet they are rarely consulted again once the
model has acted on them. `prune_messages` rewrites those stale, oversized tool
results into a one-line placeholder that records how large the output was and
tells the model how to get it back, while leaving the most recent turns
untouched.

`compute_adaptive_settings` tightens the pruning budget once the session's
token usage crosses a threshold, so sessions close to the context limit shed
more history.

Two message shapes are supported: the host's plain mappings (``role``,
``toolName``, ``content`` blocks, ``details``) and LangChain messages, where a
`HumanMessage` starts a turn and a named `ToolMessage` is a tool result.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Mapping, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, ToolMessage

ADAPTIVE_TOKEN_THRESHOLD = 120_000
ADAPTIVE_CHAR_FACTOR = 0.66
MIN_ADAPTIVE_TOOL_CHARS = 400

DEFAULT_PRUNE_TOOL_NAMES = frozenset({"read", "bash", "kota_search"})


@dataclass(frozen=True, slots=True)
class PruneSettings:
    """
    Effective pruning parameters for one context pass.

    Attributes:
        keep_recent_turns: Number of trailing user turns that are never pruned.
            Zero disables pruning.
        max_tool_chars: Tool outputs longer than this are eligible for pruning.
        prune_tool_names: Tools whose outputs may be pruned.
    """

    keep_recent_turns: int
    max_tool_chars: int
    prune_tool_names: frozenset[str] = field(default=DEFAULT_PRUNE_TOOL_NAMES)

    def __post_init__(self) -> None:
        if self.keep_recent_turns < 0:
            raise ValueError("keep_recent_turns must be >= 0")
        if self.max_tool_chars < 0:
            raise ValueError("max_tool_chars must be >= 0")
        if not isinstance(self.prune_tool_names, frozenset):
            object.__setattr__(self, "prune_tool_names", frozenset(self.prune_tool_names))


def compute_adaptive_settings(
    base: PruneSettings,
    tokens: int | None,
    *,
    threshold: int = ADAPTIVE_TOKEN_THRESHOLD,
    char_factor: float = ADAPTIVE_CHAR_FACTOR,
    min_tool_chars: int = MIN_ADAPTIVE_TOOL_CHARS,
) -> PruneSettings:
    """
    Tightens ``base`` once token usage reaches ``threshold``.

    Below the threshold, or when usage is unknown, ``base`` is returned as is.
    Otherwise one fewer recent turn is protected (never fewer than one) and the
    tool output budget shrinks by ``char_factor`` (never below
    ``min_tool_chars``).
    """
    if not tokens or tokens < threshold:
        return base
    return replace(
        base,
        keep_recent_turns=max(1, base.keep_recent_turns - 1),
        max_tool_chars=max(min_tool_chars, math.floor(base.max_tool_chars * char_factor)),
    )


def _is_turn_boundary(message: Any) -> bool:
    if isinstance(message, BaseMessage):
        return isinstance(message, HumanMessage)
    return isinstance(message, Mapping) and message.get("role") == "user"


def _tool_name(message: Any) -> str | None:
    if isinstance(message, ToolMessage):
        return message.name if isinstance(message.name, str) else None
    if isinstance(message, Mapping) and message.get("role") == "toolResult":
        name = message.get("toolName")
        return name if isinstance(name, str) else None
    return None


def _first_text(blocks: Any) -> str:
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, Iterable):
        return ""
    for block in blocks:
        if isinstance(block, Mapping) and block.get("type") == "text":
            text = block.get("text")
            return text if isinstance(text, str) else ""
    return ""


def _tool_text(message: Any) -> str:
    if isinstance(message, BaseMessage):
        return _first_text(message.content)
    content = message.get("content")
    if isinstance(content, str):
        # Host messages carry block lists; a bare string has no text block.
        return ""
    return _first_text(content)


def pruned_placeholder(tool_name: str, original_chars: int) -> str:
    return (
        f"(Pruned) {tool_name} tool output ({original_chars} chars). "
        "Rehydrate by re-running the tool with narrower parameters."
    )


def _pruned_copy(message: Any, tool_name: str, original_chars: int) -> Any:
    placeholder = pruned_placeholder(tool_name, original_chars)
    marker = {"pruned": True, "originalChars": original_chars}
    if isinstance(message, BaseMessage):
        metadata = {**dict(message.response_metadata or {}), **marker}
        return message.model_copy(update={"content": placeholder, "response_metadata": metadata})
    details = message.get("details")
    merged = {**(dict(details) if isinstance(details, Mapping) else {}), **marker}
    return {
        **message,
        "content": [{"type": "text", "text": placeholder}],
        "details": merged,
    }


def _cutoff_index(messages: Sequence[Any], keep_recent_turns: int) -> int:
    user_indexes = [idx for idx, message in enumerate(messages) if _is_turn_boundary(message)]
    if len(user_indexes) > keep_recent_turns:
        return user_indexes[-keep_recent_turns]
    return 0


def prune_messages(messages: Sequence[Any], settings: PruneSettings) -> List[Any]:
    """
    Replaces stale, oversized tool outputs with short placeholders.

    Args:
        messages: Conversation history, oldest first.
        settings: Effective pruning parameters.

    Returns:
        A new list in which every message is either the original object or a
        pruned copy. When pruning is disabled the input sequence is returned
        unchanged.
    """
    keep_recent_turns = max(0, settings.keep_recent_turns)
    if keep_recent_turns == 0:
        return messages  # type: ignore[return-value]

    cutoff = _cutoff_index(messages, keep_recent_turns)
    result: List[Any] = []
    for idx, message in enumerate(messages):
        if idx >= cutoff:
            result.append(message)
            continue
        tool_name = _tool_name(message)
        if tool_name is None or tool_name not in settings.prune_tool_names:
            result.append(message)
            continue
        text = _tool_text(message)
        if len(text) <= settings.max_tool_chars:
            result.append(message)
            continue
        result.append(_pruned_copy(message, tool_name, len(text)))
    return result


__all__ = [
    "ADAPTIVE_CHAR_FACTOR",
    "ADAPTIVE_TOKEN_THRESHOLD",
    "DEFAULT_PRUNE_TOOL_NAMES",
    "MIN_ADAPTIVE_TOOL_CHARS",
    "PruneSettings",
    "compute_adaptive_settings",
    "prune_messages",
    "pruned_placeholder",
]
