from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from kota_governor.pruning import (
    PruneSettings,
    compute_adaptive_settings,
    prune_messages,
    pruned_placeholder,
)


def _user(text: str) -> dict:
    return {"role": "user", "content": [{"type": "text", "text": text}]}


def _tool(name: str, text: str, details: dict | None = None) -> dict:
    message = {"role": "toolResult", "toolName": name, "content": [{"type": "text", "text": text}]}
    if details is not None:
        message["details"] = details
    return message


def test_adaptive_settings_below_threshold_is_identity() -> None:
    base = PruneSettings(keep_recent_turns=2, max_tool_chars=1200)
    assert compute_adaptive_settings(base, None) is base
    assert compute_adaptive_settings(base, 119_999) is base


def test_adaptive_settings_tighten_at_threshold() -> None:
    base = PruneSettings(keep_recent_turns=2, max_tool_chars=1200)
    tightened = compute_adaptive_settings(base, 130_000)
    assert (tightened.keep_recent_turns, tightened.max_tool_chars) == (1, 792)
    assert tightened.prune_tool_names == base.prune_tool_names


def test_adaptive_settings_respect_floors() -> None:
    base = PruneSettings(keep_recent_turns=1, max_tool_chars=500)
    tightened = compute_adaptive_settings(base, 120_000)
    assert (tightened.keep_recent_turns, tightened.max_tool_chars) == (1, 400)


def test_settings_reject_negative_values() -> None:
    with pytest.raises(ValueError):
        PruneSettings(keep_recent_turns=-1, max_tool_chars=10)


def test_prunes_old_oversized_tool_output() -> None:
    big = "x" * 50
    messages = [
        _user("one"),
        _tool("read", big, details={"path": "a.py"}),
        _user("two"),
        _tool("read", big),
    ]
    settings = PruneSettings(keep_recent_turns=1, max_tool_chars=10)

    result = prune_messages(messages, settings)

    assert result is not messages
    assert result[0] is messages[0]
    assert result[2] is messages[2]
    assert result[3] is messages[3]
    pruned = result[1]
    assert pruned["content"] == [{"type": "text", "text": pruned_placeholder("read", 50)}]
    assert pruned["details"] == {"path": "a.py", "pruned": True, "originalChars": 50}
    assert messages[1]["content"][0]["text"] == big


def test_placeholder_text() -> None:
    assert pruned_placeholder("bash", 1234) == (
        "(Pruned) bash tool output (1234 chars). "
        "Rehydrate by re-running the tool with narrower parameters."
    )


def test_leaves_unlisted_tools_and_small_outputs() -> None:
    messages = [
        _user("one"),
        _tool("write", "y" * 100),
        _tool("bash", "short"),
        _user("two"),
    ]
    result = prune_messages(messages, PruneSettings(keep_recent_turns=1, max_tool_chars=10))
    assert all(a is b for a, b in zip(result, messages))


def test_keep_zero_turns_disables_pruning() -> None:
    messages = [_user("one"), _tool("read", "x" * 100), _user("two")]
    assert prune_messages(messages, PruneSettings(keep_recent_turns=0, max_tool_chars=1)) is messages


def test_fewer_user_turns_than_kept_prunes_nothing() -> None:
    messages = [_user("one"), _tool("read", "x" * 100)]
    result = prune_messages(messages, PruneSettings(keep_recent_turns=2, max_tool_chars=1))
    assert result == messages


def test_bare_string_content_counts_as_empty() -> None:
    message = {"role": "toolResult", "toolName": "read", "content": "x" * 100}
    messages = [_user("one"), message, _user("two")]
    result = prune_messages(messages, PruneSettings(keep_recent_turns=1, max_tool_chars=10))
    assert result[1] is message


def test_prunes_langchain_tool_messages() -> None:
    big = "z" * 40
    tool_message = ToolMessage(content=big, name="kota_search", tool_call_id="call-1")
    messages = [
        HumanMessage(content="find things"),
        AIMessage(content="searching"),
        tool_message,
        HumanMessage(content="thanks"),
    ]

    result = prune_messages(messages, PruneSettings(keep_recent_turns=1, max_tool_chars=10))

    pruned = result[2]
    assert isinstance(pruned, ToolMessage)
    assert pruned.content == pruned_placeholder("kota_search", 40)
    assert pruned.tool_call_id == "call-1"
    assert pruned.response_metadata["pruned"] is True
    assert pruned.response_metadata["originalChars"] == 40
    assert tool_message.content == big
    assert result[1] is messages[1]
