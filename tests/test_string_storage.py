"""Tests for the key/value string storage backends.

Verifies:
- Missing keys read as None and removing them is a no-op
- Values survive a reopen of the JSON file backend
- Corrupt or mistyped files fail closed with StorageBackendError
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from defi_risk.storage import (
    InMemoryStringStorage,
    JsonFileStringStorage,
    StorageBackendError,
    StringStorage,
)


@pytest.fixture(params=["memory", "json_file"])
def storage(request: pytest.FixtureRequest, tmp_path: Path) -> StringStorage:
    if request.param == "memory":
        return InMemoryStringStorage()
    return JsonFileStringStorage(tmp_path / "nested" / "grants.json")


class TestStorageContract:
    def test_missing_key_is_none(self, storage: StringStorage) -> None:
        assert storage.get_item("absent") is None

    def test_set_then_get(self, storage: StringStorage) -> None:
        storage.set_item("k", "v1")
        assert storage.get_item("k") == "v1"

    def test_set_overwrites(self, storage: StringStorage) -> None:
        storage.set_item("k", "v1")
        storage.set_item("k", "v2")
        assert storage.get_item("k") == "v2"

    def test_remove(self, storage: StringStorage) -> None:
        storage.set_item("k", "v1")
        storage.remove_item("k")
        assert storage.get_item("k") is None

    def test_remove_missing_is_noop(self, storage: StringStorage) -> None:
        storage.remove_item("absent")
        assert storage.get_item("absent") is None

    def test_backend_name(self, storage: StringStorage) -> None:
        assert storage.backend_name in {"memory", "json_file"}


class TestJsonFileStringStorage:
    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "grants.json"
        JsonFileStringStorage(path).set_item("key", "value")
        assert JsonFileStringStorage(path).get_item("key") == "value"

    def test_file_is_plain_json(self, tmp_path: Path) -> None:
        path = tmp_path / "grants.json"
        storage = JsonFileStringStorage(path)
        storage.set_item("b", "2")
        storage.set_item("a", "1")
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1", "b": "2"}

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        storage = JsonFileStringStorage(tmp_path / "grants.json")
        storage.set_item("k", "v")
        assert [p.name for p in tmp_path.iterdir()] == ["grants.json"]

    def test_empty_file_reads_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "grants.json"
        path.write_text("   ", encoding="utf-8")
        assert JsonFileStringStorage(path).get_item("k") is None

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "grants.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageBackendError, match="Corrupt"):
            JsonFileStringStorage(path).get_item("k")

    def test_non_string_values_raise(self, tmp_path: Path) -> None:
        path = tmp_path / "grants.json"
        path.write_text(json.dumps({"k": 1}), encoding="utf-8")
        with pytest.raises(StorageBackendError, match="string map"):
            JsonFileStringStorage(path).get_item("k")


class TestInMemoryStringStorage:
    def test_len_tracks_entries(self) -> None:
        storage = InMemoryStringStorage()
        storage.set_item("a", "1")
        storage.set_item("b", "2")
        storage.remove_item("a")
        assert len(storage) == 1
