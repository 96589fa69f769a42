import json

import pytest

from services.kv_store import JsonFileStore, MemoryStore, load_json_mapping, save_json_mapping


@pytest.mark.unit
class TestJsonFileStore:
    def test_roundtrip_and_keys(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "kv"))
        assert store.get("missing") is None
        assert store.keys() == []
        store.set("photopath_usage_anon", '{"count": 1}')
        assert store.get("photopath_usage_anon") == '{"count": 1}'
        assert store.keys() == ["photopath_usage_anon"]
        assert not list((tmp_path / "kv").glob("*.tmp"))

    def test_unsafe_key_characters_are_replaced(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.set("user/../x", "1")
        assert (tmp_path / "user_.._x.json").exists()
        assert store.get("user/../x") == "1"

    def test_remove(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.set("a", "1")
        store.remove("a")
        store.remove("a")
        assert store.get("a") is None


@pytest.mark.unit
class TestJsonMappingHelpers:
    def test_missing_key_is_empty(self):
        assert load_json_mapping(MemoryStore(), "k") == {}

    def test_corrupt_is_empty(self):
        store = MemoryStore()
        store.set("k", "{oops")
        assert load_json_mapping(store, "k") == {}

    def test_non_dict_is_empty(self):
        store = MemoryStore()
        store.set("k", json.dumps([1, 2]))
        assert load_json_mapping(store, "k") == {}

    def test_save_preserves_order_and_unicode(self):
        store = MemoryStore()
        assert save_json_mapping(store, "k", {"b": "渡口", "a": 1})
        assert list(load_json_mapping(store, "k")) == ["b", "a"]
        assert "渡口" in store.get("k")
