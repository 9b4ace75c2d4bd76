"""Pytest configuration for shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pytest
from dotenv import load_dotenv


def _load_env_files(paths: Iterable[Path]) -> None:
    """Load local dotenv files without overriding any pre-set environment vars."""
    for env_path in paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)


_REPO_ROOT = Path(__file__).resolve().parent.parent
_load_env_files((_REPO_ROOT / ".env",))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def isolate_kota_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer overrides from leaking into config-dependent tests."""
    for name in (
        "KOTA_COMMAND",
        "KOTA_CONNECT_TIMEOUT_MS",
        "KOTA_BLOBS_DIR",
        "KOTA_LOG_PATH",
        "KOTA_LOG_LEVEL",
        "KOTA_LOG_FORMAT",
        "KOTA_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
