"""Tests for atomic JSON writes."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from sandgate.utils import read_json, write_json_atomic


def test_creates_parent_dirs(tmp_path: Path):
    path = tmp_path / "a" / "b" / "data.json"
    write_json_atomic(path, {"x": 1})
    assert json.loads(path.read_text()) == {"x": 1}


def test_indented_output_ends_with_newline(tmp_path: Path):
    path = tmp_path / "data.json"
    write_json_atomic(path, {"x": [1, 2]}, indent=2)
    assert path.read_text() == '{\n  "x": [\n    1,\n    2\n  ]\n}\n'


def test_replaces_existing_file(tmp_path: Path):
    path = tmp_path / "data.json"
    write_json_atomic(path, {"v": 1})
    write_json_atomic(path, {"v": 2})
    assert json.loads(path.read_text()) == {"v": 2}
    assert [p.name for p in tmp_path.iterdir()] == ["data.json"]


def test_failed_rename_keeps_old_content_and_cleans_up(tmp_path: Path):
    path = tmp_path / "data.json"
    write_json_atomic(path, {"v": 1})

    with (
        patch("sandgate.utils.os.replace", side_effect=OSError("disk full")),
        pytest.raises(OSError),
    ):
        write_json_atomic(path, {"v": 2})

    assert json.loads(path.read_text()) == {"v": 1}
    assert [p.name for p in tmp_path.iterdir()] == ["data.json"]


def test_read_json_missing_is_none(tmp_path: Path):
    assert read_json(tmp_path / "missing.json") is None


def test_read_json_invalid_raises(tmp_path: Path):
    path = tmp_path / "bad.json"
    path.write_text("{")
    with pytest.raises(json.JSONDecodeError):
        read_json(path)
