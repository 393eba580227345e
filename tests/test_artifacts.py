"""
Tests for the lock-safe writers and loaders.

Run with: pytest tests/test_artifacts.py -v
"""

import pandas as pd
import pytest

from brca_causal import artifacts


class TestSafePath:

    def test_free_path_unchanged(self, tmp_path):
        path = tmp_path / "report.txt"
        assert artifacts.safe_path_if_locked(path) == path

    def test_existing_path_gets_new_suffix(self, tmp_path):
        path = tmp_path / "report.txt"
        path.write_text("x", encoding="utf-8")
        assert artifacts.safe_path_if_locked(path).name == "report__new.txt"

        (tmp_path / "report__new.txt").write_text("x", encoding="utf-8")
        assert artifacts.safe_path_if_locked(path).name == "report__new2.txt"


def test_locked_csv_redirected(tmp_path, monkeypatch):
    path = tmp_path / "edges.csv"
    path.write_text("locked", encoding="utf-8")
    original = pd.DataFrame.to_csv

    def to_csv(self, target, *args, **kwargs):
        if str(target) == str(path):
            raise PermissionError("file is open")
        return original(self, target, *args, **kwargs)

    monkeypatch.setattr(pd.DataFrame, "to_csv", to_csv)

    saved = artifacts.safe_to_csv(pd.DataFrame({"a": [1]}), path)

    assert saved.name == "edges__new.csv"
    assert path.read_text(encoding="utf-8") == "locked"


def test_writers_create_parent_dirs(tmp_path):
    saved = artifacts.safe_write_json({"a": 1}, tmp_path / "nested" / "out.json")

    assert artifacts.load_json(saved) == {"a": 1}


class TestLoaders:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            artifacts.load_csv(tmp_path / "missing.csv")
        with pytest.raises(FileNotFoundError):
            artifacts.load_json(tmp_path / "missing.json")

    def test_required_columns(self, tmp_path):
        path = tmp_path / "edges.csv"
        pd.DataFrame({"source": ["a"], "target": ["b"]}).to_csv(path, index=False)

        with pytest.raises(ValueError, match="type"):
            artifacts.load_csv(path, required={"source", "target", "type"})
        assert len(artifacts.load_csv(path, required={"source", "target"})) == 1


def test_write_with_fallback_retries_on_new_name(tmp_path):
    path = tmp_path / "report.txt"
    path.write_text("locked", encoding="utf-8")
    written = []

    def writer(p):
        if p == path:
            raise PermissionError("file is open")
        p.write_text("fresh", encoding="utf-8")
        written.append(p.name)

    saved = artifacts.write_with_fallback(path, writer)

    assert written == ["report__new.txt"]
    assert saved.read_text(encoding="utf-8") == "fresh"
