from __future__ import annotations

import json
import os

import pytest

from kota_governor.config import DEFAULT_CONFIG, expand_tilde, load_config, merge_config
from kota_governor.errors import ConfigError


def _write(path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")


@pytest.fixture
def dirs(tmp_path):
    home = tmp_path / "home"
    repo = tmp_path / "repo"
    home.mkdir()
    repo.mkdir()
    return home, repo


def test_defaults_without_files(dirs) -> None:
    home, repo = dirs
    loaded = load_config(cwd=str(repo), project_root=str(repo), home_dir=str(home), environ={})

    config = loaded.config
    assert config.kota.command == "bun"
    assert config.kota.args == ["x", "kotadb@next", "--stdio", "--toolset", "core"]
    assert config.kota.connect_timeout_ms == 10_000
    assert config.kota.auto_context == "off"
    assert config.prune.keep_recent_turns == 2
    assert config.prune.max_tool_chars == 1200
    assert config.blobs.max_size_bytes == 50 * 1024 * 1024
    assert config.blobs.dir == os.path.join(str(home), ".pi/cache/pi-kota/blobs")
    assert config.log.enabled is False
    assert loaded.sources.global_path is None
    assert loaded.sources.project_path is None


def test_project_overrides_global(dirs) -> None:
    home, repo = dirs
    global_path = home / ".pi/agent/pi-kota.json"
    project_path = repo / ".pi/pi-kota.json"
    _write(global_path, {"kota": {"autoContext": "always", "connectTimeoutMs": 5000}})
    _write(project_path, {"kota": {"autoContext": "onPaths"}, "prune": {"maxToolChars": 900}})

    loaded = load_config(cwd=str(repo), project_root=str(repo), home_dir=str(home), environ={})

    assert loaded.config.kota.auto_context == "onPaths"
    assert loaded.config.kota.connect_timeout_ms == 5000
    assert loaded.config.prune.max_tool_chars == 900
    assert loaded.sources.global_path == str(global_path)
    assert loaded.sources.project_path == str(project_path)


def test_invalid_fields_keep_previous_layer(dirs) -> None:
    home, repo = dirs
    _write(home / ".pi/agent/pi-kota.json", {"prune": {"keepRecentTurns": 4}})
    _write(
        repo / ".pi/pi-kota.json",
        {
            "kota": {"command": "", "toolset": "full", "connectTimeoutMs": "fast"},
            "prune": {"keepRecentTurns": -1, "enabled": "yes", "adaptive": False},
            "blobs": "not-an-object",
        },
    )

    config = load_config(cwd=str(repo), project_root=str(repo), home_dir=str(home), environ={}).config

    assert config.kota.command == "bun"
    assert config.kota.toolset == "core"
    assert config.kota.connect_timeout_ms == 10_000
    assert config.prune.keep_recent_turns == 4
    assert config.prune.enabled is True
    assert config.prune.adaptive is False
    assert config.blobs.enabled is True


def test_invalid_json_raises_config_error(dirs) -> None:
    home, repo = dirs
    _write(repo / ".pi/pi-kota.json", "{not json")

    with pytest.raises(ConfigError):
        load_config(cwd=str(repo), project_root=str(repo), home_dir=str(home), environ={})


def test_non_object_json_raises_config_error(dirs) -> None:
    home, repo = dirs
    _write(home / ".pi/agent/pi-kota.json", "[1, 2]")

    with pytest.raises(ConfigError):
        load_config(cwd=str(repo), project_root=str(repo), home_dir=str(home), environ={})


def test_environment_overrides_apply_last(dirs) -> None:
    home, repo = dirs
    _write(repo / ".pi/pi-kota.json", {"kota": {"command": "node"}})
    environ = {
        "KOTA_COMMAND": "/opt/bin/bun",
        "KOTA_CONNECT_TIMEOUT_MS": "2500",
        "KOTA_BLOBS_DIR": "~/blobs",
        "KOTA_LOG_PATH": str(repo / "debug.jsonl"),
    }

    config = load_config(cwd=str(repo), project_root=str(repo), home_dir=str(home), environ=environ).config

    assert config.kota.command == "/opt/bin/bun"
    assert config.kota.connect_timeout_ms == 2500
    assert config.blobs.dir == os.path.join(str(home), "blobs")
    assert config.log.enabled is True
    assert config.log.path == str(repo / "debug.jsonl")


def test_non_integer_timeout_env_is_ignored(dirs) -> None:
    home, repo = dirs
    config = load_config(
        cwd=str(repo),
        project_root=str(repo),
        home_dir=str(home),
        environ={"KOTA_CONNECT_TIMEOUT_MS": "soon"},
    ).config
    assert config.kota.connect_timeout_ms == 10_000


def test_merge_accepts_snake_case_keys() -> None:
    merged = merge_config(DEFAULT_CONFIG, {"prune": {"keep_recent_turns": 3}, "unknown": {"x": 1}})
    assert merged.prune.keep_recent_turns == 3
    assert DEFAULT_CONFIG.prune.keep_recent_turns == 2


def test_prune_settings_projection() -> None:
    merged = merge_config(DEFAULT_CONFIG, {"prune": {"toolNames": ["read"], "maxToolChars": 50}})
    settings = merged.prune_settings()
    assert settings.prune_tool_names == frozenset({"read"})
    assert settings.max_tool_chars == 50


def test_expand_tilde() -> None:
    assert expand_tilde("~", "/home/me") == "/home/me"
    assert expand_tilde("~/x/y", "/home/me") == os.path.join("/home/me", "x/y")
    assert expand_tilde("/abs/~/x", "/home/me") == "/abs/~/x"
    assert expand_tilde("~other/x", "/home/me") == "~other/x"
