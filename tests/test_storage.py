import pytest

from pharmaqms.errors import StorageFailure
from pharmaqms.storage import (FileStore, MemoryStore, SessionStateStore, load_collection, load_document,
                               save_collection, save_document)


def test_memory_store_quota_refuses_oversized_write():
    store = MemoryStore(quota=20)
    store.set("a", "x" * 15)
    with pytest.raises(StorageFailure) as exc:
        store.set("b", "y" * 10)
    assert exc.value.key == "b"
    assert store.get("b") is None
    # replacing an existing key only counts the new value
    store.set("a", "z" * 20)
    assert store.get("a") == "z" * 20


def test_memory_store_rejects_non_string_values():
    with pytest.raises(StorageFailure):
        MemoryStore().set("k", {"not": "serialized"})


def test_file_store_persists_across_instances(tmp_path):
    first = FileStore(str(tmp_path))
    save_collection(first, "pharma_capa_v4", [{"id": "CAPA-1"}])
    second = FileStore(str(tmp_path))
    assert load_collection(second, "pharma_capa_v4") == [{"id": "CAPA-1"}]
    assert list(second.keys()) == ["pharma_capa_v4"]
    second.remove("pharma_capa_v4")
    assert second.get("pharma_capa_v4") is None


def test_file_store_leaves_no_temp_files(tmp_path):
    store = FileStore(str(tmp_path))
    store.set("pharma_oos_records_v1", "[]")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["pharma_oos_records_v1.json"]


def test_session_state_store_is_namespaced():
    mapping = {"widget_key": 1}
    store = SessionStateStore(mapping)
    store.set("pharma_recalls_v1", "[]")
    assert list(store.keys()) == ["pharma_recalls_v1"]
    assert "widget_key" in mapping
    store.remove("pharma_recalls_v1")
    assert store.get("pharma_recalls_v1") is None


def test_corrupt_collection_reads_as_empty():
    store = MemoryStore()
    store.set("pharma_deviations_v1", "{not json")
    assert load_collection(store, "pharma_deviations_v1") == []
    store.set("pharma_deviations_v1", '{"a": 1}')
    assert load_collection(store, "pharma_deviations_v1") == []


def test_documents_round_trip_with_default():
    store = MemoryStore()
    assert load_document(store, "prefs", {"x": 1}) == {"x": 1}
    save_document(store, "prefs", {"systemAlertsEnabled": False})
    assert load_document(store, "prefs") == {"systemAlertsEnabled": False}


def test_strict_read_refuses_corrupt_collection():
    store = MemoryStore()
    assert load_collection(store, "pharma_deviations_v1", strict=True) == []
    store.set("pharma_deviations_v1", '[{"id": "DEV-1"')
    with pytest.raises(StorageFailure) as exc:
        load_collection(store, "pharma_deviations_v1", strict=True)
    assert exc.value.key == "pharma_deviations_v1"
    store.set("pharma_deviations_v1", '"text"')
    with pytest.raises(StorageFailure):
        load_collection(store, "pharma_deviations_v1", strict=True)
