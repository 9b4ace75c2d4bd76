from __future__ import annotations

from kota_governor.state import ConnectionStatus
from kota_governor.status import StatusInfo, format_status_line


def test_running_line_shows_index_state() -> None:
    info = StatusInfo(status=ConnectionStatus.RUNNING, repo_root="/work/my-repo", indexed=True)
    assert format_status_line(info) == "● running | my-repo | indexed"

    info = StatusInfo(status=ConnectionStatus.RUNNING, repo_root="/work/my-repo/", indexed=False)
    assert format_status_line(info) == "● running | my-repo | not indexed"


def test_stopped_and_starting_lines() -> None:
    assert format_status_line(StatusInfo(ConnectionStatus.STOPPED, None, False)) == "○ stopped | (no repo)"
    assert format_status_line(StatusInfo(ConnectionStatus.STARTING, "/r", False)) == "◌ starting | r"


def test_error_line_truncates_message() -> None:
    info = StatusInfo(ConnectionStatus.ERROR, "/r", False, last_error="x" * 100)
    line = format_status_line(info)
    assert line.startswith("✖ error | r | ")
    assert line.endswith("x" * 40 + "…")


def test_styler_receives_roles() -> None:
    seen = []

    def style(role: str, text: str) -> str:
        seen.append(role)
        return f"<{role}>{text}"

    format_status_line(StatusInfo(ConnectionStatus.RUNNING, "/r", True), style=style)
    assert seen == ["success", "success", "dim", "dim", "dim", "success"]
