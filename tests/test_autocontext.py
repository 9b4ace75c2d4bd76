from __future__ import annotations

import pytest

from kota_governor.autocontext import extract_file_paths, should_auto_inject


def test_extracts_paths_in_first_occurrence_order() -> None:
    text = "Touch src/index.ts, docs/design.md, and src/index.ts"
    assert extract_file_paths(text) == ["src/index.ts", "docs/design.md"]


def test_extracts_path_at_start_and_nested_paths() -> None:
    assert extract_file_paths("src/index.ts then more text") == ["src/index.ts"]
    assert extract_file_paths("Open src/a/b/c/d/matcher.spec.ts") == ["src/a/b/c/d/matcher.spec.ts"]


def test_ignores_urls_and_extensionless_paths() -> None:
    assert extract_file_paths("See https://example.com and /etc/passwd") == []
    assert extract_file_paths("Look at src/utils/helpers") == []
    assert extract_file_paths("hello world") == []
    assert extract_file_paths("") == []


def test_ignores_windows_drive_paths() -> None:
    text = "Read C:/Users/dev/project/src/index.ts and src/paths.ts"
    assert extract_file_paths(text) == ["src/paths.ts"]


def test_accepts_hidden_directories_hyphens_and_underscores() -> None:
    assert extract_file_paths("Open src/.hidden/config.ts") == ["src/.hidden/config.ts"]
    assert extract_file_paths("Check my-app/src_utils/helper-fn.ts") == ["my-app/src_utils/helper-fn.ts"]


def test_trailing_punctuation_is_not_part_of_path() -> None:
    assert extract_file_paths("Fix lib/b.py.") == ["lib/b.py"]


@pytest.mark.parametrize(
    ("count", "mode", "expected"),
    [
        (2, "off", False),
        (0, "always", True),
        (0, "onPaths", False),
        (1, "onPaths", True),
        (3, "onPaths", True),
        (4, "onPaths", False),
    ],
)
def test_should_auto_inject(count: int, mode: str, expected: bool) -> None:
    paths = [f"src/file{idx}.ts" for idx in range(count)]
    assert should_auto_inject(paths, mode) is expected  # type: ignore[arg-type]
