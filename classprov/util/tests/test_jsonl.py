from pathlib import Path
from unittest.mock import patch

from classprov.util.jsonl import append_jsonl, read_jsonl


def test_append_jsonl_and_read_jsonl(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "history.jsonl"

    assert append_jsonl(path, {"run_id": "a", "succeeded": True}) is True
    assert append_jsonl(path, '{"run_id":"b","succeeded":false}') is True

    assert list(read_jsonl(path)) == [
        {"run_id": "a", "succeeded": True},
        {"run_id": "b", "succeeded": False},
    ]


def test_read_jsonl_skips_empty_and_invalid_lines(tmp_path: Path) -> None:
    path = tmp_path / "mixed.jsonl"
    path.write_text('{"a": 1}\n\nnot-json\n{"b": 2}\n', encoding="utf-8")

    assert list(read_jsonl(path)) == [{"a": 1}, {"b": 2}]


def test_read_jsonl_missing_file_yields_nothing(tmp_path: Path) -> None:
    assert list(read_jsonl(tmp_path / "missing.jsonl")) == []


def test_append_jsonl_reports_os_errors(tmp_path: Path) -> None:
    with patch("classprov.util.jsonl.os.fsync", side_effect=OSError("disk full")):
        assert append_jsonl(tmp_path / "history.jsonl", {"x": 1}) is False
