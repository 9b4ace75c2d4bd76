from __future__ import annotations

import json
import os

import pytest

from kota_governor.cli import main


def test_config_command_prints_merged_config(tmp_path, monkeypatch, capsys) -> None:
    home = tmp_path / "home"
    repo = tmp_path / "repo"
    (repo / ".pi").mkdir(parents=True)
    home.mkdir()
    (repo / ".pi" / "pi-kota.json").write_text(json.dumps({"prune": {"maxToolChars": 321}}), encoding="utf-8")
    monkeypatch.setenv("HOME", str(home))

    main(["--cwd", str(repo), "config"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["config"]["prune"]["maxToolChars"] == 321
    assert payload["config"]["blobs"]["dir"] == os.path.join(str(home), ".pi/cache/pi-kota/blobs")
    assert payload["sources"] == {"global": None, "project": str(repo / ".pi" / "pi-kota.json")}


def test_missing_command_prints_help(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1
    assert "usage" in capsys.readouterr().out
