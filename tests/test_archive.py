import io
import json

from pharmaqms.archive import STORAGE_KEYS, export_all, export_bytes, import_all, load_archive
from pharmaqms.errors import ErrorKind
from pharmaqms.storage import MemoryStore


def test_export_bundles_known_collections(engine, store, analyst):
    engine.recalls.create({"type": "Mock", "batch": "B7"}, analyst)
    store.set("pharma_oos_records_v1", "not json at all")
    store.set("unrelated_widget_state", "[]")

    document = export_all(store, "2.0.0")
    assert document["app_version"] == "2.0.0"
    assert "export_date" in document
    assert document["pharma_recalls_v1"][0]["batch"] == "B7"
    assert document["pharma_oos_records_v1"] == "not json at all"
    assert "unrelated_widget_state" not in document
    assert set(document) - {"export_date", "app_version"} <= set(STORAGE_KEYS)


def test_export_import_restores_everything(engine, store, analyst):
    engine.recalls.create({"type": "Class II", "batch": "B8"}, analyst)
    payload = export_bytes(store, "2.0.0")

    target = MemoryStore()
    parsed = load_archive(io.BytesIO(payload))
    report = import_all(target, parsed.value).value
    assert "pharma_recalls_v1" in report.restored
    assert report.ignored == []
    assert target.get("pharma_recalls_v1") == store.get("pharma_recalls_v1")


def test_unknown_keys_are_reported():
    target = MemoryStore()
    report = import_all(target, {"pharma_capa_v4": [], "legacy_key": [1], "app_version": "1.0"}).value
    assert report.restored == ["pharma_capa_v4"]
    assert report.ignored == ["legacy_key"]
    assert target.get("legacy_key") is None
    assert json.loads(target.get("pharma_capa_v4")) == []


def test_invalid_archives_are_refused():
    assert import_all(MemoryStore(), ["not", "a", "dict"]).error == ErrorKind.VALIDATION
    assert load_archive(io.StringIO("{broken")).error == ErrorKind.VALIDATION


def test_engine_restore_is_admin_only_and_audited(engine, admin, analyst):
    document = {"pharma_recalls_v1": []}
    assert engine.restore_archive(document, analyst).error == ErrorKind.UNAUTHORIZED
    assert engine.restore_archive(document, admin).ok
    assert engine.audit.query()[0].action == "DATA_RESTORED"
    engine.export_archive(admin)
    assert engine.audit.query()[0].action == "DATA_EXPORTED"
