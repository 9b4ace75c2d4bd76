from __future__ import annotations

import io
import logging
import sys

from kota_governor.logging_utils import configure_logging


def _reset_root_logger() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)


def test_configure_logging_sets_level(monkeypatch) -> None:
    _reset_root_logger()
    monkeypatch.setenv("KOTA_LOG_LEVEL", "debug")

    assert configure_logging(force=True) == logging.DEBUG
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("mcp").level == logging.WARNING


def test_configure_logging_is_idempotent() -> None:
    _reset_root_logger()

    configure_logging(force=True)
    first_count = len(logging.getLogger().handlers)

    configure_logging()
    second_count = len(logging.getLogger().handlers)

    assert first_count == second_count != 0


def test_configure_logging_writes_to_stream_and_file(monkeypatch, tmp_path) -> None:
    _reset_root_logger()
    log_file = tmp_path / "logs" / "kota.log"
    monkeypatch.setenv("KOTA_LOG_FILE", str(log_file))
    monkeypatch.setenv("KOTA_LOG_FORMAT", "%(levelname)s %(message)s")
    stream = io.StringIO()

    configure_logging(level="info", stream=stream, force=True)
    logging.getLogger("kota_governor.test").info("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "INFO hello" in stream.getvalue()
    assert "INFO hello" in log_file.read_text(encoding="utf-8")
    _reset_root_logger()


def test_unknown_level_falls_back_to_info() -> None:
    _reset_root_logger()
    assert configure_logging(level="chatty", force=True) == logging.INFO


def test_records_go_to_stderr_by_default(monkeypatch, capsys) -> None:
    _reset_root_logger()
    fake_stderr = io.StringIO()
    monkeypatch.setattr(sys, "stderr", fake_stderr)

    configure_logging(level="info", force=True)
    logging.getLogger("kota_governor.test").info("to stderr")

    assert "to stderr" in fake_stderr.getvalue()
    assert "to stderr" not in capsys.readouterr().out
    _reset_root_logger()
