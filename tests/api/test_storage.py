import json

import pytest

from tracklens.api.services.storage import JsonFileStore, MemoryStore, StorageError


class TestMemoryStore:
    def test_get_returns_only_present_keys(self):
        store = MemoryStore({"activity": {"u": 1}})

        assert store.get(["activity", "tracking"]) == {"activity": {"u": 1}}

    def test_values_are_copied(self):
        store = MemoryStore()
        value = {"u": 1}
        store.set({"activity": value})
        value["u"] = 2

        assert store.get(["activity"])["activity"] == {"u": 1}


class TestJsonFileStore:
    """JSONファイルストアのテスト"""

    def test_missing_file_is_empty(self, tmp_path):
        store = JsonFileStore(tmp_path / "state.json")

        assert store.get(["activity"]) == {}

    def test_set_merges_keys(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        store = JsonFileStore(path)

        store.set({"activity": {"http://a.com": 10}})
        store.set({"cachedAnalysis": "hello"})

        assert store.get(["activity", "cachedAnalysis"]) == {
            "activity": {"http://a.com": 10},
            "cachedAnalysis": "hello",
        }
        assert json.loads(path.read_text(encoding="utf-8"))["cachedAnalysis"] == "hello"
        assert not path.with_suffix(".tmp").exists()

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError):
            JsonFileStore(path).get(["activity"])

    def test_corrupt_file_is_replaced_on_next_set(self, tmp_path):
        """壊れたファイルは退避され、次の書き込みで作り直される"""
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileStore(path)

        store.set({"activity": {"http://a.com": 5}})
        store.set({"cachedAnalysis": "ok"})

        assert store.get(["activity", "cachedAnalysis"]) == {
            "activity": {"http://a.com": 5},
            "cachedAnalysis": "ok",
        }
        assert path.with_suffix(".corrupt").read_text(encoding="utf-8") == "{not json"

    def test_non_object_document_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(StorageError):
            JsonFileStore(path).get(["activity"])
